import math

import torch.nn as nn

from convnps.utils.helpers import channels_to_2nd_dim, channels_to_last_dim
from convnps.utils.initialization import weights_init

__all__ = ["ResConvBlock", "CNN", "get_kernel_size"]


def get_kernel_size(receptive_field, points_per_unit, n_blocks):
    """
    Return the (odd) kernel size such that a stack of `n_blocks` convolutions has
    approximately the given receptive field on a grid with `points_per_unit`
    points per unit.
    """
    kernel_size = max(1, int(round(receptive_field * points_per_unit / n_blocks)))
    # odd kernel size to keep the same number of points
    return kernel_size if kernel_size % 2 == 1 else kernel_size + 1


class ResConvBlock(nn.Module):
    """Pre-activation residual block [1] with a depthwise separable convolution [2].

    The depthwise convolution (one filter per channel) is added to its input and the
    pointwise (`1x1`) convolution then mixes the channels, such that the block can
    change the number of channels.

    Parameters
    ----------
    in_chan : int
        Number of input channels.

    out_chan : int
        Number of output channels.

    Conv : nn.Module
        Convolutional layer (unitialized). E.g. `nn.Conv1d`.

    kernel_size : int, optional
        Size of the depthwise kernel. Needs to be odd to keep the grid size.

    activation : callable, optional

    Normalization : nn.Module, optional
        Normalization layer (unitialized) applied before the activation. E.g. `nn.BatchNorm1d`.

    References
    ----------
    [1] He, K., Zhang, X., Ren, S., & Sun, J. (2016, October). Identity mappings
        in deep residual networks. In European conference on computer vision
        (pp. 630-645). Springer, Cham.

    [2] Chollet, F. (2017). Xception: Deep learning with depthwise separable
        convolutions. In Proceedings of the IEEE conference on computer vision
        and pattern recognition (pp. 1251-1258).
    """

    def __init__(
        self,
        in_chan,
        out_chan,
        Conv,
        kernel_size=5,
        activation=nn.ReLU(),
        Normalization=nn.Identity,
    ):
        super().__init__()
        if kernel_size % 2 != 1:
            raise ValueError(f"kernel_size={kernel_size} should be odd.")

        self.pre_activation = nn.Sequential(Normalization(in_chan), activation)
        self.depthwise = Conv(
            in_chan, in_chan, kernel_size, padding=kernel_size // 2, groups=in_chan
        )
        self.pointwise = Conv(in_chan, out_chan, 1)

        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

        # the depthwise branch keeps the variance of its input, such that the residual sum
        # doubles it and the pointwise convolution halves it back
        nn.init.kaiming_normal_(self.depthwise.weight, mode="fan_in", nonlinearity="relu")
        nn.init.normal_(
            self.pointwise.weight, std=math.sqrt(1 / (2 * self.pointwise.in_channels))
        )
        for conv in [self.depthwise, self.pointwise]:
            if conv.bias is not None:
                nn.init.zeros_(conv.bias)

    def forward(self, X):
        """
        Parameters
        ----------
        X : torch.Tensor, size=[batch_size, in_chan, *grid_shape]

        Return
        ------
        out : torch.Tensor, size=[batch_size, out_chan, *grid_shape]
        """
        residual = X + self.depthwise(self.pre_activation(X))
        return self.pointwise(residual.contiguous())


class CNN(nn.Module):
    """Stack of convolutional blocks that keeps the size of the grid.

    Parameters
    ----------
    n_channels : int or list
        Number of channels. An int keeps the same number throughout, a list gives the
        channels in between blocks and needs to be of length `n_blocks + 1`, e.g.
        `[16, 32, 64]` gives `[ConvBlock(16, 32), ConvBlock(32, 64)]`.

    ConvBlock : nn.Module
        Convolutional block (unitialized), called as `ConvBlock(in_chan, out_chan, **kwargs)`.

    n_blocks : int, optional

    is_chan_last : bool, optional
        Whether the inputs and outputs have their channels last, as the rest of the models.

    kwargs :
        Additional arguments to `ConvBlock`.
    """

    def __init__(self, n_channels, ConvBlock, n_blocks=3, is_chan_last=False, **kwargs):
        super().__init__()
        if isinstance(n_channels, int):
            n_channels = [n_channels] * (n_blocks + 1)

        if len(n_channels) != n_blocks + 1:
            raise ValueError(
                f"len(n_channels)={len(n_channels)} should be n_blocks+1={n_blocks + 1}."
            )

        self.n_blocks = n_blocks
        self.is_chan_last = is_chan_last
        self.blocks = nn.Sequential(
            *[
                ConvBlock(in_chan, out_chan, **kwargs)
                for in_chan, out_chan in zip(n_channels[:-1], n_channels[1:])
            ]
        )

        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

    def forward(self, X):
        if not self.is_chan_last:
            return self.blocks(X)

        return channels_to_last_dim(self.blocks(channels_to_2nd_dim(X)))
