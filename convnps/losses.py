"""Training objectives of the conditional and latent neural processes."""
import abc
import math

import torch
import torch.nn as nn
from torch.distributions.kl import kl_divergence

from convnps.utils.helpers import MultivariateNormalDiag, sum_from_nth_dim

__all__ = ["CNPFLoss", "ELBOLossLNPF", "NLLLossLNPF"]


def sum_log_prob(prob, sample):
    """Log probability of `sample` summed over all dimensions but the first two.

    For the predictive distribution this sums over the targets, giving
    size=[n_z_samples, batch_size].
    """
    return sum_from_nth_dim(prob.log_prob(sample), 2)


class BaseLossNPF(nn.Module, abc.ABC):
    """
    Base class of the losses, which map the outputs of a model and the target values to
    a loss per task, reduced over the batch.

    Parameters
    ----------
    reduction : {None, "mean", "sum"}, optional
        Reduction over the tasks of the batch.

    fixed_sigma : float, optional
        Standard deviation of the predictions used in place of the model's one while
        `is_fixed_sigma` is set, e.g. during the first epochs. See `FixedSigmaWarmup`.
    """

    def __init__(self, reduction="mean", fixed_sigma=1e-2):
        super().__init__()
        self.reduction = reduction
        self.fixed_sigma = fixed_sigma
        self.is_fixed_sigma = False

    def forward(self, pred_outputs, Y_trgt):
        """
        Parameters
        ----------
        pred_outputs : tuple
            `(p_yCc, z_samples, q_zCc, q_zCct)` as returned by `NeuralProcessFamily`.

        Y_trgt : torch.Tensor, size=[batch_size, n_trgt, y_dim]

        Return
        ------
        loss : torch.Tensor
            size=[batch_size] if `reduction=None` else a scalar.
        """
        p_yCc, z_samples, q_zCc, q_zCct = pred_outputs

        if self.is_fixed_sigma:
            p_y_loc = p_yCc.base_dist.loc
            p_yCc = MultivariateNormalDiag(
                p_y_loc, torch.full_like(p_y_loc, self.fixed_sigma)
            )

        # size = [batch_size]
        loss = self.get_loss(p_yCc, z_samples, q_zCc, q_zCct, Y_trgt)

        if self.reduction is None:
            return loss
        elif self.reduction == "mean":
            return loss.mean(0)
        elif self.reduction == "sum":
            return loss.sum(0)
        else:
            raise ValueError(f"Unknown reduction={self.reduction}.")

    @abc.abstractmethod
    def get_loss(self, p_yCc, z_samples, q_zCc, q_zCct, Y_trgt):
        """Return the loss of every task, size=[batch_size]. See `forward` for the inputs."""


class CNPFLoss(BaseLossNPF):
    """Negative log likelihood of the targets for models without latents [1].

    References
    ----------
    [1] Garnelo, Marta, et al. "Conditional neural processes." arXiv preprint
        arXiv:1807.01613 (2018).
    """

    def get_loss(self, p_yCc, _, q_zCc, ___, Y_trgt):
        if q_zCc is not None:
            raise ValueError("`CNPFLoss` is only for models without latent variables.")

        # a single "sample", size = [batch_size]
        return -sum_log_prob(p_yCc, Y_trgt).squeeze(0)


class ELBOLossLNPF(BaseLossNPF):
    """Conditional evidence lower bound [1]:

    `-(E_{q(z|C,T)}[log p(y_T|z)] - KL(q(z|C,T) || q(z|C)))`

    The targets should contain the context and the latents should be sampled from
    `q(z|C,T)`, i.e. the model needs `is_q_zCct=True`.

    References
    ----------
    [1] Garnelo, Marta, et al. "Neural processes." arXiv preprint
        arXiv:1807.01622 (2018).
    """

    def get_loss(self, p_yCc, _, q_zCc, q_zCct, Y_trgt):
        if q_zCct is None:
            raise ValueError("`ELBOLossLNPF` requires a model with `is_q_zCct=True`.")

        # size = [batch_size]
        expected_log_lik = sum_log_prob(p_yCc, Y_trgt).mean(0)
        # independent latents, so the KLs add up. size = [batch_size]
        kl = sum_from_nth_dim(kl_divergence(q_zCct, q_zCc), 1)

        return kl - expected_log_lik


class NLLLossLNPF(BaseLossNPF):
    """
    Monte Carlo estimate of the negative marginal log likelihood of the targets [1]:

    `-log mean_k exp(log p(y_T|z_k) + log w_k)`

    where `w_k = q(z_k|C) / q(z_k|C,T)` if the latents were sampled from the proposal
    `q(z|C,T)` (importance weighting) and `w_k = 1` if they were sampled from `q(z|C)`.

    Notes
    -----
    The estimate is biased (by Jensen's inequality) but consistent in the number of samples.

    References
    ----------
    [1] Foong, Andrew YK, et al. "Meta-Learning Stationary Stochastic Process Prediction with
    Convolutional Neural Processes." arXiv preprint arXiv:2007.01332 (2020).
    """

    def get_loss(self, p_yCc, z_samples, q_zCc, q_zCct, Y_trgt):
        n_z_samples = p_yCc.batch_shape[0]

        # size = [n_z_samples, batch_size]
        log_w = sum_log_prob(p_yCc, Y_trgt)

        if q_zCct is not None:
            log_w = (
                log_w
                + sum_log_prob(q_zCc, z_samples)
                - sum_log_prob(q_zCct, z_samples)
            )

        # log-mean-exp over the samples. size = [batch_size]
        return -(torch.logsumexp(log_w, 0) - math.log(n_z_samples))
