"""Module for the observation noise of the predictive distribution."""
import math
from functools import partial

import torch
import torch.nn as nn
import torch.nn.functional as F

from convnps.architectures import MLP, get_pooler
from convnps.utils.initialization import weights_init

__all__ = [
    "get_noise_model",
    "HeteroskedasticNoise",
    "FixedNoise",
    "AmortisedNoise",
]


def get_noise_model(noise, y_dim, **kwargs):
    """
    Return the noise model which maps the decoder outputs to the location and scale of the
    predictive distribution.

    Parameters
    ----------
    noise : {"het", "fixed", "amortised"} or callable
        Type of observation noise. If not a string (callable) will return
        `noise(y_dim, **kwargs)`. Else: `"het"` the scale is predicted for every target,
        `"fixed"` a single (optionally learnable) scale shared by all targets, `"amortised"` a
        single scale per task computed by pooling some additional decoder channels.

    y_dim : int
        Dimension of y values.

    kwargs :
        Additional arguments to the noise model.
    """
    if not isinstance(noise, str):
        return noise(y_dim, **kwargs)

    noise = noise.lower()
    if noise == "het":
        noise_model = HeteroskedasticNoise(y_dim, **kwargs)
    elif noise == "fixed":
        noise_model = FixedNoise(y_dim, **kwargs)
    elif noise == "amortised":
        noise_model = AmortisedNoise(y_dim, **kwargs)
    else:
        raise ValueError("Unknown noise type {}".format(noise))

    return noise_model


class HeteroskedasticNoise(nn.Module):
    """Target dependent scale, predicted by the decoder next to the location.

    Parameters
    ----------
    y_dim : int
        Dimension of y values.

    scale_transformer : callable, optional
        Transformation to apply to the predicted scale (e.g. std for Gaussian). The default
        uses a minimum of 0.01.
    """

    def __init__(
        self, y_dim, scale_transformer=lambda y_scale: 0.01 + 0.99 * F.softplus(y_scale)
    ):
        super().__init__()
        self.y_dim = y_dim
        self.scale_transformer = scale_transformer
        self.n_suffstat = 2 * y_dim

    def forward(self, p_y_suffstat):
        """
        Parameters
        ----------
        p_y_suffstat : torch.Tensor, size=[n_z_samples, batch_size, n_trgt, n_suffstat]

        Return
        ------
        p_y_loc, p_y_scale : torch.Tensor, size=[n_z_samples, batch_size, n_trgt, y_dim]
        """
        p_y_loc, p_y_scale = p_y_suffstat.split(self.y_dim, dim=-1)
        return p_y_loc, self.scale_transformer(p_y_scale)


class FixedNoise(nn.Module):
    """Single scale shared by every target and task.

    Parameters
    ----------
    y_dim : int
        Dimension of y values.

    sigma : float, optional
        (Initial) standard deviation of the observation noise.

    is_learn_sigma : bool, optional
        Whether to learn the standard deviation.
    """

    def __init__(self, y_dim, sigma=1e-2, is_learn_sigma=True):
        super().__init__()
        self.y_dim = y_dim
        self.sigma = sigma
        self.is_learn_sigma = is_learn_sigma
        self.n_suffstat = y_dim

        log_sigma = torch.full((y_dim,), math.log(sigma))
        if self.is_learn_sigma:
            self.log_sigma = nn.Parameter(log_sigma)
        else:
            self.register_buffer("log_sigma", log_sigma)

    def forward(self, p_y_suffstat):
        p_y_loc = p_y_suffstat
        p_y_scale = self.log_sigma.exp().expand_as(p_y_loc)
        return p_y_loc, p_y_scale


class AmortisedNoise(nn.Module):
    """Scale shared by all the targets of a task, computed from pooled decoder channels.

    Parameters
    ----------
    y_dim : int
        Dimension of y values.

    n_channels : int, optional
        Number of additional decoder channels used for the noise.

    pooling_type : {"mean", "sum"}, optional
        How to pool the channels across the targets. See `get_pooler`.

    offset : float, optional
        Amount to subtract before the softplus to start with a small noise.
    """

    def __init__(self, y_dim, n_channels=8, pooling_type="mean", offset=2):
        super().__init__()
        self.y_dim = y_dim
        self.n_channels = n_channels
        self.offset = offset
        self.n_suffstat = y_dim + n_channels

        Mlp = partial(MLP, hidden_size=n_channels, n_hidden_layers=2)
        self.pre_pool = Mlp(n_channels, n_channels)
        self.pooler = get_pooler(pooling_type, n_channels)
        self.post_pool = Mlp(n_channels, y_dim)

        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

    def forward(self, p_y_suffstat):
        p_y_loc, noise_channels = p_y_suffstat.split(
            [self.y_dim, self.n_channels], dim=-1
        )

        # size = [n_z_samples, batch_size, 1, y_dim]
        pooled = self.post_pool(self.pooler(self.pre_pool(noise_channels)))
        p_y_scale = F.softplus(pooled - self.offset).expand_as(p_y_loc)

        return p_y_loc, p_y_scale
