import math

import pytest
import torch
import torch.nn as nn

from convnps.architectures import (
    CNN,
    MLP,
    DotAttender,
    MultiheadAttender,
    ResConvBlock,
    SetConv,
    discard_ith_arg,
    get_attender,
    get_kernel_size,
    get_pooler,
    merge_flat_input,
)


def test_mlp_batched_shape():
    mlp = MLP(2, 3, hidden_size=10, n_hidden_layers=3)
    x = torch.randn(5, 4, 10, 2)
    assert mlp(x).shape == (5, 4, 10, 3)

    mlp = MLP(2, 3, hidden_size=10, is_force_hid_smaller=True)
    assert mlp.hidden_size == 3


def test_merge_flat_input():
    for is_sum_merge in [True, False]:
        module = merge_flat_input(MLP, is_sum_merge=is_sum_merge)(4, 2, 3)
        out = module(torch.randn(5, 7, 4), torch.randn(5, 7, 2))
        assert out.shape == (5, 7, 3)


def test_discard_ith_arg():
    module = discard_ith_arg(nn.Linear, i=0)(100, 4, 3)
    assert module(None, torch.randn(2, 4)).shape == (2, 3)


def test_dot_attention_brute_force():
    batch_size, n_keys, n_queries, kq_size, value_size = 3, 5, 4, 6, 2
    attender = DotAttender(kq_size, value_size, value_size)
    keys = torch.randn(batch_size, n_keys, kq_size)
    queries = torch.randn(batch_size, n_queries, kq_size)
    values = torch.randn(batch_size, n_keys, value_size)

    expected = torch.zeros(batch_size, n_queries, value_size)
    for b in range(batch_size):
        for j in range(n_queries):
            logits = torch.stack([keys[b, i] @ queries[b, j] for i in range(n_keys)])
            weights = torch.exp(logits / math.sqrt(kq_size))
            weights = weights / weights.sum()
            expected[b, j] = (weights.unsqueeze(-1) * values[b]).sum(0)

    assert torch.allclose(attender(keys, queries, values), expected, atol=1e-5)


def test_multihead_attention_brute_force():
    batch_size, n_keys, n_queries = 6, 7, 8
    kq_size, value_size, out_size, n_heads = 20, 15, 4, 5
    attender = MultiheadAttender(kq_size, value_size, out_size, n_heads=n_heads)
    keys = torch.randn(batch_size, n_keys, kq_size)
    queries = torch.randn(batch_size, n_queries, kq_size)
    values = torch.randn(batch_size, n_keys, value_size)

    with torch.no_grad():
        out = attender(keys, queries, values)

        K = attender.key_transform(keys)
        Q = attender.query_transform(queries)
        V = attender.value_transform(values)
        kq_head, v_head = kq_size // n_heads, value_size // n_heads

        embeddings = torch.zeros(batch_size, n_queries, value_size)
        for h in range(n_heads):
            k = K[..., h * kq_head : (h + 1) * kq_head]
            q = Q[..., h * kq_head : (h + 1) * kq_head]
            v = V[..., h * v_head : (h + 1) * v_head]
            for b in range(batch_size):
                for j in range(n_queries):
                    logits = torch.stack([k[b, i] @ q[b, j] for i in range(n_keys)])
                    weights = torch.exp(logits / math.sqrt(kq_head))
                    weights = weights / weights.sum()
                    embeddings[b, j, h * v_head : (h + 1) * v_head] = (
                        weights.unsqueeze(-1) * v[b]
                    ).sum(0)

        expected = attender.post_processor(embeddings)

    assert out.shape == (batch_size, n_queries, out_size)
    assert torch.allclose(out, expected, atol=1e-5)


def test_transformer_attention_shape():
    attender = get_attender("transformer", 12, 12, 12, n_heads=3)
    out = attender(torch.randn(2, 5, 12), torch.randn(2, 4, 12), torch.randn(2, 5, 12))
    assert out.shape == (2, 4, 12)


def test_attention_invalid_config():
    with pytest.raises(ValueError):
        get_attender("cosine", 4, 4, 4)

    with pytest.raises(ValueError):
        MultiheadAttender(10, 10, 10, n_heads=3)

    with pytest.raises(ValueError):
        get_attender("transformer", 12, 12, 6, n_heads=3)


def test_setconv_normalises_by_density():
    set_conv = SetConv(1, 2, 5, length_scale=0.1)
    set_conv.resizer = nn.Identity()

    keys = torch.zeros(1, 1, 1)
    values = torch.tensor([[[3.0, -2.0]]])
    queries = torch.tensor([[[0.0], [10.0]]])

    with torch.no_grad():
        out = set_conv(keys, queries, values)

    # density channel then normalised values
    assert torch.allclose(out[0, 0], torch.tensor([1.0, 3.0, -2.0]), atol=1e-5)
    # far away from the context the density vanishes
    assert torch.allclose(out[0, 1, 0], torch.tensor(0.0), atol=1e-5)


def test_setconv_empty_context():
    set_conv = SetConv(1, 1, 8)
    queries = torch.linspace(-1, 1, 20).view(1, -1, 1).expand(3, 20, 1)
    out = set_conv(torch.zeros(3, 0, 1), queries, torch.zeros(3, 0, 1))
    assert out.shape == (3, 20, 8)
    assert torch.isfinite(out).all()


def test_setconv_only_1d():
    with pytest.raises(ValueError):
        SetConv(2, 1, 8)


def test_cnn_keeps_grid_size():
    cnn = CNN(8, ResConvBlock, Conv=nn.Conv1d, n_blocks=3, is_chan_last=True, kernel_size=5)
    X = torch.randn(2, 33, 8)
    assert cnn(X).shape == (2, 33, 8)


def test_cnn_preserves_scale():
    cnn = CNN(32, ResConvBlock, Conv=nn.Conv1d, n_blocks=8, kernel_size=5)
    X = torch.randn(16, 32, 200)

    with torch.no_grad():
        std = cnn(X).std().item()

    assert 0.25 < std < 4


def test_setconv_readout_divided_by_rbf_mass():
    torch.manual_seed(0)
    set_conv = SetConv(1, 4, 4, length_scale=0.5, is_density=False)
    torch.manual_seed(0)
    readout = SetConv(1, 4, 4, length_scale=0.5, is_density=False, grid_density=10)

    rbf_mass = 10 * 0.5 * math.sqrt(2 * math.pi)
    assert torch.allclose(readout.resizer.weight * rbf_mass, set_conv.resizer.weight)

    # a constant signal on the grid is read out with the scale of one value
    keys = torch.linspace(-5, 5, 101).view(1, -1, 1)
    readout.resizer = nn.Identity()
    with torch.no_grad():
        out = readout(keys, torch.zeros(1, 1, 1), torch.ones(1, 101, 4))
    assert torch.allclose(out / rbf_mass, torch.ones(1, 1, 4), atol=1e-3)


def test_cnn_invalid_config():
    with pytest.raises(ValueError):
        ResConvBlock(4, 4, nn.Conv1d, kernel_size=4)

    with pytest.raises(ValueError):
        CNN([4, 8], ResConvBlock, Conv=nn.Conv1d, n_blocks=3)


def test_get_kernel_size_is_odd():
    for receptive_field, points_per_unit, n_blocks in [(1, 32, 8), (2, 64, 8), (16, 64, 8)]:
        kernel_size = get_kernel_size(receptive_field, points_per_unit, n_blocks)
        assert kernel_size % 2 == 1
        assert abs(kernel_size * n_blocks - receptive_field * points_per_unit) <= n_blocks


@pytest.mark.parametrize("pooling_type", ["mean", "sum"])
def test_pooler(pooling_type):
    pooler = get_pooler(pooling_type, 4)
    assert pooler(torch.randn(3, 2, 10, 4)).shape == (3, 2, 1, 4)


def test_pooler_unknown():
    with pytest.raises(ValueError):
        get_pooler("max", 4)
