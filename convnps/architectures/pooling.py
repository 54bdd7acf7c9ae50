import torch.nn as nn

__all__ = ["get_pooler", "MeanPooling", "SumPooling"]


def get_pooler(pooling_type, n_channels):
    """Return a pooling module over the points (penultimate dimension).

    Parameters
    ----------
    pooling_type : {"mean", "sum"}
        `"mean"` averages the points and normalizes the result with a layer norm.
        `"sum"` sums the points and divides by `1000` to help initialisation.

    n_channels : int
        Number of channels of the pooled representation.
    """
    if pooling_type == "mean":
        return MeanPooling(nn.LayerNorm(n_channels))
    elif pooling_type == "sum":
        return SumPooling(factor=1000)
    else:
        raise ValueError("Unknown pooling type {}".format(pooling_type))


class MeanPooling(nn.Module):
    """Mean over the points followed by an optional normalization.

    Input size `[*, n_points, n_channels]` gives `[*, 1, n_channels]`.
    """

    def __init__(self, normalizer=nn.Identity()):
        super().__init__()
        self.normalizer = normalizer

    def forward(self, X):
        return self.normalizer(X.mean(dim=-2, keepdim=True))


class SumPooling(nn.Module):
    """Sum over the points divided by `factor`.

    Input size `[*, n_points, n_channels]` gives `[*, 1, n_channels]`.
    """

    def __init__(self, factor=1):
        super().__init__()
        self.factor = factor

    def forward(self, X):
        return X.sum(dim=-2, keepdim=True) / self.factor
