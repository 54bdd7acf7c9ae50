from functools import partial

import torch
import torch.nn as nn

from convnps.utils.initialization import weights_init

from .mlp import MLP

__all__ = ["merge_flat_input", "discard_ith_arg"]


class DiscardIthArg(nn.Module):
    """
    Wraps `To` such that the `i`^th positional argument of both the constructor and
    `forward` is dropped. E.g. a decoder `Decoder(x_dim, r_dim, n_out)` that should
    not depend on the target inputs (translation equivariance).
    """

    def __init__(self, *args, i=0, To=nn.Identity, **kwargs):
        super().__init__()
        self.i = i
        self.destination = To(*self.without_ith(args), **kwargs)

    def without_ith(self, args):
        return args[: self.i] + args[self.i + 1 :]

    def forward(self, *args, **kwargs):
        return self.destination(*self.without_ith(args), **kwargs)


def discard_ith_arg(module, i, **kwargs):
    """Return a constructor of `module` that ignores its `i`^th positional argument."""
    return partial(DiscardIthArg, i=i, To=module, **kwargs)


class MergeFlatInputs(nn.Module):
    """
    Module taking two flat inputs `x1` and `x2` and giving them to a module that
    takes a single one.

    Parameters
    ----------
    FlatModule : nn.Module
        Module (unitialized) called as `FlatModule(in_dim, n_out, **kwargs)`.

    x1_dim : int

    x2_dim : int

    n_out : int

    is_sum_merge : bool, optional
        Whether to map `x2` to the size of `x1` with an MLP and sum them (followed by
        a ReLU so that the two linear layers do not collapse). Else concatenates them.

    kwargs :
        Additional arguments to `FlatModule`.
    """

    def __init__(self, FlatModule, x1_dim, x2_dim, n_out, is_sum_merge=False, **kwargs):
        super().__init__()
        self.is_sum_merge = is_sum_merge

        if is_sum_merge:
            self.resizer = MLP(x2_dim, x1_dim)
            in_dim = x1_dim
        else:
            in_dim = x1_dim + x2_dim

        self.flat_module = FlatModule(in_dim, n_out, **kwargs)
        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

    def forward(self, x1, x2):
        if self.is_sum_merge:
            merged = torch.relu(x1 + self.resizer(x2))
        else:
            merged = torch.cat([x1, x2], dim=-1)

        return self.flat_module(merged)


def merge_flat_input(module, is_sum_merge=False, **kwargs):
    """
    Return a constructor `(x1_dim, x2_dim, n_out, **kwargs) -> nn.Module` of `module`
    extended to take an additional flat input. See `MergeFlatInputs`.
    """
    return partial(MergeFlatInputs, module, is_sum_merge=is_sum_merge, **kwargs)
