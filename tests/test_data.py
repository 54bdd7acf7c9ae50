import numpy as np
import pytest
import torch
from scipy.stats import randint
from sklearn.gaussian_process.kernels import RBF

from experiment.data import (
    GaussianProcess,
    Mixture,
    Sawtooth,
    TaskDataset,
    TaskSampler,
    get_process,
    halve,
    uniform_range,
)


def test_sampler_shapes():
    sampler = TaskSampler(
        Sawtooth(),
        batch_size=4,
        num_context=randint(3, 4),
        num_target=randint(5, 6),
    )
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = sampler()

    assert X_cntxt.shape == Y_cntxt.shape == (4, 3, 1)
    assert X_trgt.shape == Y_trgt.shape == (4, 5, 1)
    for t in (X_cntxt, Y_cntxt, X_trgt, Y_trgt):
        assert t.dtype == torch.float32


def test_sampler_counts_shared_in_batch():
    sampler = TaskSampler(get_process("eq"), batch_size=8)
    for _ in range(5):
        X_cntxt, Y_cntxt, X_trgt, Y_trgt = sampler()
        assert X_cntxt.size(1) == Y_cntxt.size(1)
        assert 0 <= X_cntxt.size(1) <= 50
        assert X_trgt.size(1) == Y_trgt.size(1) == 50


def test_sampler_empty_context():
    sampler = TaskSampler(
        get_process("matern52"), batch_size=2, num_context=randint(0, 1)
    )
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = sampler()
    assert X_cntxt.shape == Y_cntxt.shape == (2, 0, 1)
    assert Y_trgt.shape == (2, 50, 1)


def test_sampler_input_ranges():
    sampler = TaskSampler(
        Sawtooth(),
        x_context=uniform_range(0, 2),
        x_target=uniform_range(2, 4),
        num_context=randint(10, 11),
    )
    X_cntxt, _, X_trgt, _ = sampler()
    assert ((X_cntxt >= 0) & (X_cntxt <= 2)).all()
    assert ((X_trgt >= 2) & (X_trgt <= 4)).all()


def test_sampler_joint_sampling():
    # a constant process shows whether contexts and targets come from the same draw
    sampler = TaskSampler(
        lambda X: np.full_like(X, np.random.randn()),
        batch_size=3,
        num_context=randint(4, 5),
    )
    _, Y_cntxt, _, Y_trgt = sampler()
    assert torch.allclose(Y_cntxt[:, :1].expand_as(Y_trgt), Y_trgt)


def test_sampler_add_cntxts_to_trgts():
    sampler = TaskSampler(
        Sawtooth(),
        batch_size=2,
        num_context=randint(3, 4),
        num_target=randint(5, 6),
        is_add_cntxts_to_trgts=True,
    )
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = sampler()
    assert X_trgt.shape == (2, 8, 1)
    assert torch.equal(X_trgt[:, :3], X_cntxt)
    assert torch.equal(Y_trgt[:, :3], Y_cntxt)


def test_sampler_invalid_config():
    with pytest.raises(ValueError):
        TaskSampler("eq")

    with pytest.raises(ValueError):
        TaskSampler(Sawtooth(), num_context=(0, 50))


def test_task_dataset():
    sampler = TaskSampler(Sawtooth(), batch_size=2, num_context=randint(1, 2))
    dataset = TaskDataset(sampler, n_batches=3)
    assert len(dataset) == 3

    inputs, targets = dataset[0]
    assert set(inputs) == {"X_cntxt", "Y_cntxt", "X_trgt", "Y_trgt"}
    assert targets is inputs["Y_trgt"]

    with pytest.raises(IndexError):
        dataset[3]


def test_halve():
    assert halve(randint(0, 51)).support() == (0, 25)
    assert halve(randint(50, 51)).support() == (25, 25)
    assert halve(randint(100, 101)).support() == (50, 50)


@pytest.mark.parametrize("data_name", ["eq-small", "eq", "matern52", "noisy-mixture", "weakly-periodic", "sawtooth", "mixture"])
def test_get_process(data_name):
    process = get_process(data_name)
    X = np.linspace(-2, 2, 30).reshape(-1, 1)
    Y = process(X)
    assert Y.shape == (30, 1)
    assert np.isfinite(Y).all()


def test_get_process_unknown():
    with pytest.raises(ValueError):
        get_process("brownian-motion")


def test_sawtooth_range():
    X = np.linspace(-2, 2, 100).reshape(-1, 1)
    Y = Sawtooth()(X)
    assert ((Y >= 0) & (Y < 1)).all()


def test_mixture_needs_processes():
    with pytest.raises(ValueError):
        Mixture()


def test_gp_posterior():
    gp = GaussianProcess(RBF(0.25, length_scale_bounds="fixed"))
    X_cntxt = np.array([[-1.0], [0.0], [1.0]])
    Y_cntxt = gp(X_cntxt)

    mean, std = gp.posterior(X_cntxt, Y_cntxt, X_cntxt)
    assert np.allclose(mean, Y_cntxt.ravel(), atol=1e-3)
    assert (std < 1e-2).all()

    # prior when there is no context
    X_trgt = np.linspace(-2, 2, 5).reshape(-1, 1)
    mean, std = gp.posterior(np.zeros((0, 1)), np.zeros((0, 1)), X_trgt)
    assert np.allclose(mean, 0)
    assert np.allclose(std, 1, atol=1e-3)
