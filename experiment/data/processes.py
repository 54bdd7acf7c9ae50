"""Synthetic 1D stochastic processes from which the tasks are sampled."""
import logging

import numpy as np
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import RBF, ExpSineSquared, Matern, WhiteKernel

__all__ = ["GaussianProcess", "Sawtooth", "Mixture", "get_process"]

logger = logging.getLogger(__name__)


class GaussianProcess:
    """Gaussian process with zero mean and a scikit-learn kernel.

    Parameters
    ----------
    kernel : sklearn.gaussian_process.kernels.Kernel
        Covariance function. Its hyperparameters are never optimized.

    jitter : float, optional
        Value added to the diagonal of the covariance matrix for numerical stability.
    """

    def __init__(self, kernel, jitter=1e-6):
        self.kernel = kernel
        self.jitter = jitter

    def __repr__(self):
        return f"GaussianProcess({self.kernel})"

    def __call__(self, X):
        """Return a joint sample, size=[n, 1], at the features `X`, size=[n, 1]."""
        n = X.shape[0]
        if n == 0:
            return np.zeros((0, 1))

        K = self.kernel(X) + self.jitter * np.eye(n)
        L = np.linalg.cholesky(K)
        return L @ np.random.randn(n, 1)

    def posterior(self, X_cntxt, Y_cntxt, X_trgt):
        """Return the mean and std of the exact posterior at `X_trgt` given the context.

        Parameters
        ----------
        X_cntxt, Y_cntxt : np.ndarray, size=[n_cntxt, 1]

        X_trgt : np.ndarray, size=[n_trgt, 1]

        Return
        ------
        mean, std : np.ndarray, size=[n_trgt]
        """
        gp = GaussianProcessRegressor(
            kernel=self.kernel, alpha=self.jitter, optimizer=None
        )

        # without context, an unfitted regressor predicts with the prior
        if len(X_cntxt) > 0:
            gp.fit(X_cntxt, Y_cntxt.ravel())

        mean, std = gp.predict(X_trgt, return_std=True)
        return mean.ravel(), std.ravel()


class Sawtooth:
    """Sawtooth wave with random frequency, direction and offset.

    Parameters
    ----------
    freq_range : tuple of float, optional
        Range of the uniform distribution of the frequency.

    noise : float, optional
        Standard deviation of the Gaussian noise added to the wave.
    """

    def __init__(self, freq_range=(3, 5), noise=0):
        self.freq_range = freq_range
        self.noise = noise

    def __repr__(self):
        return f"Sawtooth(freq_range={self.freq_range}, noise={self.noise})"

    def __call__(self, X):
        freq = np.random.uniform(*self.freq_range)
        direction = np.random.choice([-1, 1])
        offset = np.random.uniform(0, 1)
        Y = np.mod(freq * direction * X + offset, 1)
        if self.noise > 0:
            Y = Y + self.noise * np.random.randn(*Y.shape)
        return Y


class Mixture:
    """Uniform mixture of stochastic processes, one of which is chosen for every draw."""

    def __init__(self, *processes):
        if len(processes) == 0:
            raise ValueError("`Mixture` needs at least one process.")
        self.processes = processes

    def __repr__(self):
        return f"Mixture{self.processes}"

    def __call__(self, X):
        process = self.processes[np.random.randint(len(self.processes))]
        return process(X)


def _eq():
    return GaussianProcess(RBF(length_scale=0.25, length_scale_bounds="fixed"))


def _matern52():
    return GaussianProcess(
        Matern(length_scale=0.25, length_scale_bounds="fixed", nu=2.5)
    )


def _noisy_mixture():
    return GaussianProcess(
        RBF(length_scale=0.25, length_scale_bounds="fixed")
        + RBF(length_scale=1.0, length_scale_bounds="fixed")
        + WhiteKernel(noise_level=1e-3, noise_level_bounds="fixed")
    )


def _weakly_periodic():
    return GaussianProcess(
        RBF(length_scale=0.5, length_scale_bounds="fixed")
        * ExpSineSquared(
            length_scale=1.0,
            periodicity=0.25,
            length_scale_bounds="fixed",
            periodicity_bounds="fixed",
        )
    )


PROCESSES = {
    "eq-small": _eq,
    "eq": _eq,
    "matern52": _matern52,
    "noisy-mixture": _noisy_mixture,
    "weakly-periodic": _weakly_periodic,
    "sawtooth": Sawtooth,
    "mixture": lambda: Mixture(
        _eq(), _matern52(), _noisy_mixture(), _weakly_periodic(), Sawtooth()
    ),
}


def get_process(data_name):
    """Return the stochastic process associated with a dataset name."""
    data_name = data_name.lower()
    if data_name not in PROCESSES:
        raise ValueError(f"Unknown data {data_name}.")

    process = PROCESSES[data_name]()
    logger.info(f"Using process {process} for data {data_name}.")
    return process
