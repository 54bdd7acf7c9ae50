"""Translation equivariant neural processes that operate on a discretisation of the input range."""
import logging
from functools import partial

import torch
import torch.nn as nn

from convnps.architectures import CNN, ResConvBlock, SetConv, discard_ith_arg, get_pooler

from .base import LatentNeuralProcessFamily, NeuralProcessFamily
from .helpers import (
    collapse_z_samples_batch,
    extract_z_samples_batch,
    replicate_z_samples,
)

logger = logging.getLogger(__name__)

__all__ = ["ConvCNP", "ConvLNP"]


class ConvCNP(NeuralProcessFamily):
    """
    Convolutional conditional neural process [1].

    The context set is mapped to a regular grid (the induced inputs) by a set
    convolution with a density channel, processed by a CNN and read out at the targets
    by a second set convolution. The decoder does not see the target inputs so that the
    model is translation equivariant.

    Parameters
    ----------
    x_dim : int
        Dimension of the inputs, only `1` is supported.

    y_dim : int

    points_per_unit : int, optional
        Density of the grid.

    margin : float, optional
        Distance by which the grid extends beyond the extreme context and target inputs.

    Interpolator : callable, optional
        Set convolution (unitialized) between points and the grid, called as
        `Interpolator(x_dim, in_channels, out_channels, length_scale=...)`, and with
        `is_density=False, grid_density=points_per_unit` for the readout.

    CNN : nn.Module, optional
        Convolutional network (unitialized) on the grid, called as `CNN(r_dim)` and taking
        inputs with channels last.

    kwargs :
        Additional arguments to `NeuralProcessFamily`.

    References
    ----------
    [1] Gordon, Jonathan, et al. "Convolutional conditional neural processes." arXiv preprint
    arXiv:1910.13556 (2019).
    """

    _valid_paths = ["deterministic"]

    def __init__(
        self,
        x_dim,
        y_dim,
        points_per_unit=64,
        margin=1,
        Interpolator=SetConv,
        CNN=partial(
            CNN,
            ConvBlock=ResConvBlock,
            Conv=nn.Conv1d,
            n_blocks=3,
            is_chan_last=True,
            kernel_size=11,
        ),
        **kwargs,
    ):
        if "Decoder" in kwargs:
            logger.warning(
                "Custom `Decoder` given to a convolutional model, it should ignore the target inputs (e.g. `discard_ith_arg(Decoder, i=0)`) to stay translation equivariant."
            )

        kwargs.setdefault("encoded_path", "deterministic")
        super().__init__(x_dim, y_dim, x_transf_dim=None, XEncoder=nn.Identity, **kwargs)

        self.points_per_unit = points_per_unit
        self.margin = margin
        self.X_induced = None
        self.CNN = CNN

        # twice the spacing of the grid
        length_scale = 2 / self.points_per_unit
        self.cntxt_to_induced = Interpolator(
            self.x_dim, self.y_dim, self.r_dim, length_scale=length_scale
        )
        self.induced_to_induced = CNN(self.r_dim)
        self.induced_to_trgt = Interpolator(
            self.x_dim,
            self.r_dim,
            self.r_dim,
            length_scale=length_scale,
            is_density=False,
            grid_density=self.points_per_unit,
        )

        self.reset_parameters()

    @property
    def n_induced(self):
        return len(self.X_induced)

    @property
    def dflt_Modules(self):
        Modules = NeuralProcessFamily.dflt_Modules.__get__(self)
        Modules["Decoder"] = discard_ith_arg(Modules["SubDecoder"], i=0)
        return Modules

    def forward(self, X_cntxt, Y_cntxt, X_trgt, Y_trgt=None):
        # the prior and the proposal of a batch are encoded on the same grid
        self.set_induced(X_cntxt, X_trgt)
        return super().forward(X_cntxt, Y_cntxt, X_trgt, Y_trgt=Y_trgt)

    def set_induced(self, X_cntxt, X_trgt):
        """
        Discretise the range covered by the context and target inputs (with a margin)
        at `points_per_unit` points per unit.
        """
        X = torch.cat([X_cntxt, X_trgt], dim=1)
        x_min = X.min().item() - self.margin
        x_max = X.max().item() + self.margin
        n_induced = int(round(self.points_per_unit * (x_max - x_min))) + 1
        self.X_induced = torch.linspace(x_min, x_max, n_induced, device=X.device)

    def get_X_induced(self, batch_size):
        """Grid repeated for every task, size=[batch_size, n_induced, x_dim]."""
        return self.X_induced.view(1, -1, 1).expand(batch_size, self.n_induced, self.x_dim)

    def encode_globally(self, X_cntxt, Y_cntxt):
        # size = [batch_size, n_induced, r_dim]
        R_induced = self.cntxt_to_induced(
            X_cntxt, self.get_X_induced(X_cntxt.size(0)), Y_cntxt
        )
        return self.induced_to_induced(R_induced)

    def trgt_dependent_representation(self, X_cntxt, z_samples, R_induced, X_trgt):
        X_induced = self.get_X_induced(X_trgt.size(0))
        # size = [1, batch_size, n_trgt, r_dim]
        return self.induced_to_trgt(X_induced, X_trgt, R_induced).unsqueeze(0)


class ConvLNP(LatentNeuralProcessFamily, ConvCNP):
    """
    Convolutional (latent) neural process [1]. A latent is sampled at every point of the
    grid and mixed by a second CNN before being read out at the targets, which gives
    coherent function samples.

    Parameters
    ----------
    x_dim : int

    y_dim : int

    CNNPostZ : nn.Module, optional
        CNN (unitialized) applied to every latent sample. `None` uses the same as `CNN`.
        It runs once per sample so it is the most expensive part of the model.

    n_global_channels : int, optional
        Number of latent channels shared by all the grid points, in addition to the
        `z_dim` local ones. `0` only uses local latents.

    pooling_type : {"mean", "sum"}, optional
        Pooling of the grid representation from which the global latent is inferred.
        See `get_pooler`.

    kwargs :
        Additional arguments to `ConvCNP` and `LatentNeuralProcessFamily`.

    Notes
    -----
    With global channels the local and global latents form a single distribution with
    event shape `[n_induced * z_dim + n_global_channels]`, so that the KL and importance
    weights treat them jointly. `z_samples` then have size
    `[n_z_samples, batch_size, n_induced * z_dim + n_global_channels]`.

    References
    ----------
    [1] Foong, Andrew YK, et al. "Meta-Learning Stationary Stochastic Process Prediction with
    Convolutional Neural Processes." arXiv preprint arXiv:2007.01332 (2020).
    """

    _valid_paths = ["latent"]

    def __init__(
        self,
        x_dim,
        y_dim,
        CNNPostZ=None,
        n_global_channels=0,
        pooling_type="mean",
        **kwargs,
    ):
        super().__init__(x_dim, y_dim, encoded_path="latent", **kwargs)

        self.n_global_channels = n_global_channels
        self.is_global = self.n_global_channels > 0

        if self.is_global:
            self.global_pooler = get_pooler(pooling_type, self.r_dim)
            self.global_latent_encoder = self.dflt_Modules["LatentEncoder"](
                self.r_dim, 2 * self.n_global_channels
            )

        # every grid point gets its local and the global channels
        n_z_channels = self.z_dim + self.n_global_channels
        if n_z_channels != self.r_dim:
            self.reshaper_z = nn.Linear(n_z_channels, self.r_dim)
        elif hasattr(self, "reshaper_z"):
            del self.reshaper_z

        CNNPostZ = self.CNN if CNNPostZ is None else CNNPostZ
        self.induced_to_induced_post_sampling = CNNPostZ(self.r_dim)

        self.reset_parameters()

    @property
    def dflt_Modules(self):
        Modules = ConvCNP.dflt_Modules.__get__(self)
        Modules.update(LatentNeuralProcessFamily.dflt_Modules.__get__(self))
        # the post sampling CNN already does most of the decoding
        Modules["Decoder"] = discard_ith_arg(nn.Linear, i=0)
        return Modules

    def infer_latent_dist(self, X, R):
        if not self.is_global:
            return super().infer_latent_dist(X, R)

        # size = [batch_size, n_induced, z_dim] each
        q_z_loc, q_z_scale = self.latent_encoder(R).split(self.z_dim, dim=-1)

        # size = [batch_size, 1, n_global_channels] each
        q_global_loc, q_global_scale = self.global_latent_encoder(
            self.global_pooler(R)
        ).split(self.n_global_channels, dim=-1)

        # batch shape = [batch_size] ; event shape = [n_induced * z_dim + n_global_channels]
        return self.to_latent_dist(
            torch.cat([q_z_loc.flatten(1), q_global_loc.flatten(1)], dim=-1),
            torch.cat([q_z_scale.flatten(1), q_global_scale.flatten(1)], dim=-1),
        )

    def split_global_latent(self, z_samples):
        """Unflatten the local latents and append the global channels to every grid point.

        Returns a tensor of size `[n_z_samples, batch_size, n_induced, z_dim + n_global_channels]`.
        """
        n_z_samples, batch_size, _ = z_samples.shape

        local_z, global_z = z_samples.split(
            [self.n_induced * self.z_dim, self.n_global_channels], dim=-1
        )
        local_z = local_z.view(n_z_samples, batch_size, self.n_induced, self.z_dim)
        global_z = global_z.unsqueeze(-2).expand(
            n_z_samples, batch_size, self.n_induced, self.n_global_channels
        )

        return torch.cat([local_z, global_z], dim=-1)

    def trgt_dependent_representation(self, X_cntxt, z_samples, _, X_trgt):
        n_z_samples = z_samples.size(0)
        batch_size = X_trgt.size(0)

        if self.is_global:
            z_samples = self.split_global_latent(z_samples)

        # the CNN needs a single batch dimension, so samples are merged with the batch
        # size = [n_z_samples * batch_size, *, *]
        X_induced = collapse_z_samples_batch(
            replicate_z_samples(self.get_X_induced(batch_size), n_z_samples)
        )
        X_trgt = collapse_z_samples_batch(replicate_z_samples(X_trgt, n_z_samples))
        z_samples = collapse_z_samples_batch(z_samples)

        if hasattr(self, "reshaper_z"):
            z_samples = self.reshaper_z(z_samples)

        # size = [n_z_samples * batch_size, n_induced, r_dim]
        R_induced = self.induced_to_induced_post_sampling(z_samples)

        # size = [n_z_samples * batch_size, n_trgt, r_dim]
        R_trgt = self.induced_to_trgt(X_induced, X_trgt, R_induced)

        return extract_z_samples_batch(R_trgt, n_z_samples, batch_size)
