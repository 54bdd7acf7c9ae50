import numpy as np
import torch
from scipy.stats import randint, uniform

__all__ = ["TaskSampler", "TaskDataset", "halve", "uniform_range"]


def uniform_range(low, high):
    """Continuous uniform distribution on `[low, high]`."""
    return uniform(loc=low, scale=high - low)


def halve(dist):
    """Return the discrete uniform distribution with both bounds halved."""
    low, high = dist.support()
    return randint(int(low) // 2, int(high) // 2 + 1)


def _check_distribution(dist, name):
    if not hasattr(dist, "rvs"):
        raise ValueError(f"Unknown distribution {name}={dist}, should have `rvs`.")


class TaskSampler:
    """Sample batches of tasks (context and target sets) from a stochastic process.

    Parameters
    ----------
    process : callable
        Stochastic process which returns a joint sample `Y`, size=[n, 1], when called on
        features `X`, size=[n, 1]. See `experiment.data.processes`.

    batch_size : int, optional
        Number of tasks per batch.

    x_context, x_target : scipy.stats frozen distribution, optional
        Distribution of the context and target features.

    num_context, num_target : scipy.stats frozen distribution, optional
        Distribution of the number of context and target points. These are sampled once per
        batch such that all the tasks of a batch have the same size.

    is_add_cntxts_to_trgts : bool, optional
        Whether to add the context points to the targets.
    """

    def __init__(
        self,
        process,
        batch_size=16,
        x_context=uniform_range(-2, 2),
        x_target=uniform_range(-2, 2),
        num_context=randint(0, 51),
        num_target=randint(50, 51),
        is_add_cntxts_to_trgts=False,
    ):
        if not callable(process):
            raise ValueError(f"Unknown process={process}, should be callable.")

        _check_distribution(x_context, "x_context")
        _check_distribution(x_target, "x_target")
        _check_distribution(num_context, "num_context")
        _check_distribution(num_target, "num_target")

        self.process = process
        self.batch_size = batch_size
        self.x_context = x_context
        self.x_target = x_target
        self.num_context = num_context
        self.num_target = num_target
        self.is_add_cntxts_to_trgts = is_add_cntxts_to_trgts

    def sample_task(self, n_cntxt, n_trgt):
        """Sample the features and values of a single task."""
        X_cntxt = self.x_context.rvs(size=(n_cntxt, 1))
        X_trgt = self.x_target.rvs(size=(n_trgt, 1))

        # sample jointly to keep the dependencies between context and targets
        Y = self.process(np.concatenate([X_cntxt, X_trgt], axis=0))
        Y_cntxt, Y_trgt = Y[:n_cntxt], Y[n_cntxt:]

        if self.is_add_cntxts_to_trgts:
            X_trgt = np.concatenate([X_cntxt, X_trgt], axis=0)
            Y_trgt = np.concatenate([Y_cntxt, Y_trgt], axis=0)

        return X_cntxt, Y_cntxt, X_trgt, Y_trgt

    def __call__(self):
        """Sample a batch of tasks.

        Return
        ------
        X_cntxt, Y_cntxt : torch.Tensor, size=[batch_size, n_cntxt, 1]

        X_trgt, Y_trgt : torch.Tensor, size=[batch_size, n_trgt, 1]
        """
        n_cntxt = int(self.num_context.rvs())
        n_trgt = int(self.num_target.rvs())

        tasks = [self.sample_task(n_cntxt, n_trgt) for _ in range(self.batch_size)]

        # stack every element of the tasks
        return tuple(
            torch.from_numpy(np.stack(task_elem, axis=0)).float()
            for task_elem in zip(*tasks)
        )


class TaskDataset(torch.utils.data.Dataset):
    """Dataset of `n_batches` batches of tasks, freshly sampled at every access.

    Notes
    -----
    Items are whole batches, so the data loader should be used with `batch_size=None`.

    Parameters
    ----------
    sampler : TaskSampler
        Sampler of batches of tasks.

    n_batches : int
        Number of batches in the dataset (i.e. per epoch).
    """

    def __init__(self, sampler, n_batches):
        self.sampler = sampler
        self.n_batches = n_batches

    def __len__(self):
        return self.n_batches

    def __getitem__(self, i):
        if i >= self.n_batches:
            raise IndexError(f"index {i} out of range for {self.n_batches} batches.")

        X_cntxt, Y_cntxt, X_trgt, Y_trgt = self.sampler()
        inputs = dict(X_cntxt=X_cntxt, Y_cntxt=Y_cntxt, X_trgt=X_trgt, Y_trgt=Y_trgt)
        targets = Y_trgt

        return inputs, targets
