import math

import torch
import torch.nn as nn

from convnps.utils.initialization import weights_init

__all__ = ["SetConv", "ExpRBF"]


class ExpRBF(nn.Module):
    """Gaussian radial basis function with one length scale per channel.

    Parameters
    ----------
    n_channels : int
        Number of channels, each having its own length scale.

    length_scale : float, optional
        Initial length scale of every channel.
    """

    def __init__(self, n_channels, length_scale=0.1):
        super().__init__()
        self.n_channels = n_channels
        self.length_scale = length_scale
        self.reset_parameters()

    def reset_parameters(self):
        self.log_length_scales = nn.Parameter(
            torch.full((self.n_channels,), math.log(self.length_scale))
        )

    def forward(self, diff):
        """
        Parameters
        ----------
        diff : torch.Tensor, size=[batch_size, n_queries, n_keys, x_dim]

        Return
        ------
        weight : torch.Tensor, size=[batch_size, n_queries, n_keys, n_channels]
        """
        # size=[batch_size, n_queries, n_keys, 1]
        dist2 = diff.pow(2).sum(dim=-1, keepdim=True)
        scales = self.log_length_scales.exp()
        return torch.exp(-0.5 * dist2 / scales.pow(2))


class SetConv(nn.Module):
    """Applies a convolution over a set of inputs, i.e. generalizes `nn._ConvNd`
    to non uniformly sampled samples [1].

    Parameters
    ----------
    x_dim : int
        Number of spatio-temporal dimensions of input.

    in_channels : int
        Number of input channels.

    out_channels : int
        Number of output channels.

    length_scale : float, optional
        Initial length scale of the radial basis function. Typically twice the
        spacing of the discretisation.

    is_density : bool, optional
        Whether to add a density channel. The data channels are then normalized
        by the density, which makes the output well defined (zero data channels)
        for empty sets.

    grid_density : float, optional
        Number of keys per unit when the keys lie on a regular grid, as when reading out
        a discretisation. The resizer weights are then divided at initialization by the
        mass of the radial basis function on the grid.

    RadialBasisFunc : callable, optional
        Function which returns the "weight" of each points as a function of their
        distance (i.e. for usual CNN that would be the filter).

    References
    ----------
    [1] Gordon, Jonathan, et al. "Convolutional conditional neural processes." arXiv preprint
    arXiv:1910.13556 (2019).
    """

    def __init__(
        self,
        x_dim,
        in_channels,
        out_channels,
        length_scale=0.1,
        is_density=True,
        grid_density=None,
        RadialBasisFunc=ExpRBF,
    ):
        super().__init__()
        if x_dim != 1:
            raise ValueError(
                "Currently only supports single spatial dimension `x_dim==1`, got {}.".format(
                    x_dim
                )
            )
        self.is_density = is_density
        self.length_scale = length_scale
        self.grid_density = grid_density
        n_channels = in_channels + int(is_density)
        self.radial_basis_func = RadialBasisFunc(n_channels, length_scale=length_scale)
        self.resizer = nn.Linear(n_channels, out_channels)
        self.reset_parameters()

    def reset_parameters(self):
        # the resizer is linear
        weights_init(self, activation=None)

        if self.grid_density is not None:
            rbf_mass = self.grid_density * self.length_scale * math.sqrt(2 * math.pi)
            with torch.no_grad():
                self.resizer.weight.div_(rbf_mass)

    def forward(self, keys, queries, values):
        """
        Compute the set convolution between {key, value} and {query}.

        Parameters
        ----------
        keys : torch.Tensor, size=[batch_size, n_keys, x_dim]
        queries : torch.Tensor, size=[batch_size, n_queries, x_dim]
        values : torch.Tensor, size=[batch_size, n_keys, in_channels]

        Return
        ------
        targets : torch.Tensor, size=[batch_size, n_queries, out_channels]
        """
        if self.is_density:
            # size = [batch_size, n_keys, in_channels+1]
            values = torch.cat([torch.ones_like(values[..., :1]), values], dim=-1)

        # weight size = [batch_size, n_queries, n_keys, in_channels(+1)]
        weight = self.radial_basis_func(keys.unsqueeze(1) - queries.unsqueeze(2))

        # size = [batch_size, n_queries, in_channels(+1)]
        targets = (weight * values.unsqueeze(1)).sum(dim=2)

        if self.is_density:
            density, signal = targets[..., :1], targets[..., 1:]
            targets = torch.cat([density, signal / (density + 1e-8)], dim=-1)

        return self.resizer(targets)
