import math

import torch
import torch.nn as nn

from convnps.utils.initialization import weights_init

from .mlp import MLP

__all__ = ["get_attender", "DotAttender", "MultiheadAttender", "TransformerAttender"]


def get_attender(attention, kq_size, value_size, out_size, **kwargs):
    """
    Return the module that lets every target (query) attend to the context (keys, values).

    Parameters
    ----------
    attention : callable or {"scaledot", "multihead", "transformer"}
        Attention mechanism. A callable is instantiated with the sizes and `kwargs`.
        `"scaledot"` is the dot product rescaled by the square root of the key size [1],
        `"multihead"` applies it on `n_heads` learned projections [1] and `"transformer"`
        adds a residual connection, layer normalization and a pointwise MLP [2].

    kq_size : int
        Size of the keys and queries.

    value_size : int
        Size of the values.

    out_size : int
        Size of the output.

    kwargs :
        Additional arguments to the attender.

    References
    ----------
    [1] Vaswani, Ashish, et al. "Attention is all you need." Advances in neural
        information processing systems. 2017.
    [2] Parmar, Niki, et al. "Image transformer." arXiv preprint arXiv:1802.05751
        (2018).
    """
    if not isinstance(attention, str):
        return attention(kq_size, value_size, out_size, **kwargs)

    attenders = dict(
        scaledot=DotAttender, multihead=MultiheadAttender, transformer=TransformerAttender
    )
    try:
        Attender = attenders[attention.lower()]
    except KeyError:
        raise ValueError(f"Unknown attention={attention}.")

    return Attender(kq_size, value_size, out_size, **kwargs)


class DotAttender(nn.Module):
    """
    (Scaled) dot product attention, weights are the softmax of `<key, query>` over the keys.

    Parameters
    ----------
    kq_size : int
        Size of the keys and queries.

    value_size : int
        Size of the values.

    out_size : int
        Size of the output. A linear layer is added if it differs from `value_size`.

    is_scale : bool, optional
        Whether to divide the logits by `sqrt(kq_size)`, which keeps the softmax from
        saturating for large keys.
    """

    def __init__(self, kq_size, value_size, out_size, is_scale=True):
        super().__init__()
        self.kq_size = kq_size
        self.value_size = value_size
        self.out_size = out_size
        self.is_scale = is_scale

        if self.value_size != self.out_size:
            self.resizer = nn.Linear(self.value_size, self.out_size)
        else:
            self.resizer = nn.Identity()

        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

    def forward(self, keys, queries, values):
        """
        Parameters
        ----------
        keys : torch.Tensor, size=[batch_size, n_keys, kq_size]
        queries : torch.Tensor, size=[batch_size, n_queries, kq_size]
        values : torch.Tensor, size=[batch_size, n_keys, value_size]

        Return
        ------
        context : torch.Tensor, size=[batch_size, n_queries, out_size]
        """
        # size = [batch_size, n_queries, n_keys]
        logits = queries @ keys.transpose(-2, -1)
        if self.is_scale:
            logits = logits / math.sqrt(keys.size(-1))

        return self.resizer(logits.softmax(dim=-1) @ values)


class MultiheadAttender(nn.Module):
    """
    Multihead attention [1]: keys, queries and values are linearly projected, split in
    `n_heads` contiguous chunks, attended to independently and concatenated back.

    Parameters
    ----------
    kq_size : int
        Size of the keys and queries. Needs to be a multiple of `n_heads`.

    value_size : int
        Size of the values. Needs to be a multiple of `n_heads`.

    out_size : int
        Size of the output.

    n_heads : int, optional
        Number of heads.

    is_post_process : bool, optional
        Whether to mix the heads with a final linear layer. Always the case when
        `value_size != out_size`.

    References
    ----------
    [1] Vaswani, Ashish, et al. "Attention is all you need." Advances in neural
        information processing systems. 2017.
    """

    def __init__(self, kq_size, value_size, out_size, n_heads=8, is_post_process=True):
        super().__init__()
        if kq_size % n_heads != 0 or value_size % n_heads != 0:
            raise ValueError(
                f"kq_size={kq_size} and value_size={value_size} should be multiples of n_heads={n_heads}."
            )

        self.kq_size = kq_size
        self.value_size = value_size
        self.out_size = out_size
        self.n_heads = n_heads

        # a single projection for all heads, each head uses its own chunk
        self.key_transform = nn.Linear(kq_size, kq_size, bias=False)
        self.query_transform = nn.Linear(kq_size, kq_size)
        self.value_transform = nn.Linear(value_size, value_size, bias=False)
        self.dot = DotAttender(
            kq_size // n_heads, value_size // n_heads, value_size // n_heads
        )

        if is_post_process or value_size != out_size:
            self.post_processor = nn.Linear(value_size, out_size)
        else:
            self.post_processor = nn.Identity()

        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

        # the projections are split, so fan_out is the size of a head
        for transform, size in [
            (self.key_transform, self.kq_size),
            (self.query_transform, self.kq_size),
            (self.value_transform, self.value_size),
        ]:
            std = math.sqrt(2.0 / (size + size // self.n_heads))
            nn.init.normal_(transform.weight, mean=0, std=std)

    def split_heads(self, x):
        """`[batch_size, n, size]` -> `[batch_size * n_heads, n, size // n_heads]`."""
        batch_size, n, size = x.shape
        x = x.view(batch_size, n, self.n_heads, size // self.n_heads)
        return x.transpose(1, 2).reshape(batch_size * self.n_heads, n, -1)

    def merge_heads(self, x):
        """Inverse of `split_heads`."""
        _, n, head_size = x.shape
        x = x.view(-1, self.n_heads, n, head_size).transpose(1, 2)
        return x.reshape(-1, n, self.n_heads * head_size)

    def forward(self, keys, queries, values):
        """
        Parameters
        ----------
        keys : torch.Tensor, size=[batch_size, n_keys, kq_size]
        queries : torch.Tensor, size=[batch_size, n_queries, kq_size]
        values : torch.Tensor, size=[batch_size, n_keys, value_size]

        Return
        ------
        context : torch.Tensor, size=[batch_size, n_queries, out_size]
        """
        context = self.dot(
            self.split_heads(self.key_transform(keys)),
            self.split_heads(self.query_transform(queries)),
            self.split_heads(self.value_transform(values)),
        )
        return self.post_processor(self.merge_heads(context))


class TransformerAttender(MultiheadAttender):
    """
    Transformer block used as cross attention [1]: multihead attention with a residual
    connection to the queries followed by a residual pointwise MLP, each with layer
    normalization.

    Parameters
    ----------
    kq_size : int
        Size of the keys and queries. Needs to be equal to `out_size` for the residual.

    value_size : int

    out_size : int

    kwargs :
        Additional arguments to `MultiheadAttender`.

    References
    ----------
    [1] Parmar, Niki, et al. "Image transformer." arXiv preprint arXiv:1802.05751
        (2018).
    """

    def __init__(self, kq_size, value_size, out_size, **kwargs):
        if kq_size != out_size:
            raise ValueError(
                f"kq_size={kq_size} should be equal to out_size={out_size} for residual connections."
            )
        super().__init__(kq_size, value_size, out_size, is_post_process=False, **kwargs)

        self.layer_norm_attn = nn.LayerNorm(out_size)
        self.layer_norm_mlp = nn.LayerNorm(out_size)
        self.mlp = MLP(out_size, out_size, hidden_size=out_size)

        self.reset_parameters()

    def forward(self, keys, queries, values):
        context = self.layer_norm_attn(queries + super().forward(keys, queries, values))
        return self.layer_norm_mlp(context + self.mlp(context))
