from torch.distributions import Normal
from torch.distributions.independent import Independent

__all__ = [
    "sum_from_nth_dim",
    "channels_to_2nd_dim",
    "channels_to_last_dim",
    "MultivariateNormalDiag",
]


def sum_from_nth_dim(t, dim):
    """Reduce by summation every dimension starting at `dim`, e.g. [2,3,4,5] -> [2,3] for `dim=2`."""
    return t.reshape(t.shape[:dim] + (-1,)).sum(-1)


def channels_to_2nd_dim(X):
    """Move the channels from the last dimension to the second one, as convolutions expect."""
    return X.movedim(-1, 1)


def channels_to_last_dim(X):
    """Inverse of `channels_to_2nd_dim`."""
    return X.movedim(1, -1)


def MultivariateNormalDiag(loc, scale_diag):
    """Gaussian whose event is the last dimension, with a diagonal covariance.

    Parameters are not validated, such that a diverging model gives a NaN loss
    instead of raising.
    """
    if loc.dim() < 1:
        raise ValueError("loc must be at least one-dimensional.")
    normal = Normal(loc, scale_diag, validate_args=False)
    return Independent(normal, 1, validate_args=False)
