import pytest
import torch

from convnps import predict
from convnps.neuralproc import AmortisedNoise, FixedNoise, get_noise_model

BATCH_SIZE, N_CNTXT, N_TRGT = 4, 3, 6
LATENT_MODELS = ["convnp", "convnp_global", "anp", "np"]


def get_task(n_cntxt=N_CNTXT, n_trgt=N_TRGT):
    X_cntxt = torch.rand(BATCH_SIZE, n_cntxt, 1) * 4 - 2
    Y_cntxt = torch.randn(BATCH_SIZE, n_cntxt, 1)
    X_trgt = torch.rand(BATCH_SIZE, n_trgt, 1) * 4 - 2
    Y_trgt = torch.randn(BATCH_SIZE, n_trgt, 1)
    return X_cntxt, Y_cntxt, X_trgt, Y_trgt


@pytest.mark.parametrize("model_name", ["convcnp"] + LATENT_MODELS)
@pytest.mark.parametrize("n_cntxt", [0, N_CNTXT])
def test_forward_shapes(small_models, model_name, n_cntxt):
    model = small_models(n_z_samples=3)[model_name]()
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = get_task(n_cntxt=n_cntxt)

    p_yCc, z_samples, q_zCc, q_zCct = model(X_cntxt, Y_cntxt, X_trgt)

    n_z_samples = 1 if model_name == "convcnp" else 3
    assert p_yCc.batch_shape == (n_z_samples, BATCH_SIZE, N_TRGT)
    assert p_yCc.event_shape == (1,)
    assert torch.isfinite(p_yCc.base_dist.loc).all()
    assert (p_yCc.base_dist.scale > 0).all()
    assert q_zCct is None

    if model_name == "convcnp":
        assert z_samples is None and q_zCc is None
    else:
        assert z_samples.shape[:2] == (n_z_samples, BATCH_SIZE)
        assert q_zCc is not None


@pytest.mark.parametrize("model_name", LATENT_MODELS)
@pytest.mark.parametrize("is_cntxt_in_trgt", [True, False])
def test_forward_proposal(small_models, model_name, is_cntxt_in_trgt):
    model = small_models()[model_name](
        is_q_zCct=True, is_cntxt_in_trgt=is_cntxt_in_trgt
    )
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = get_task()

    _, z_samples, q_zCc, q_zCct = model(X_cntxt, Y_cntxt, X_trgt, Y_trgt=Y_trgt)

    assert q_zCct is not None
    assert q_zCct.batch_shape == q_zCc.batch_shape
    assert q_zCct.event_shape == q_zCc.event_shape

    # without targets values, sample from the prior
    _, _, _, q_zCct = model(X_cntxt, Y_cntxt, X_trgt)
    assert q_zCct is None


def test_decode_in_sample_batches(small_models):
    model = small_models()["convnp"](n_z_samples_test=5, n_z_samples_batch=2)
    model.eval()
    p_yCc, z_samples, _, _ = model(*get_task()[:3])
    assert z_samples.size(0) == 5
    assert p_yCc.batch_shape == (5, BATCH_SIZE, N_TRGT)


def test_train_eval_n_z_samples(small_models):
    model = small_models()["np"](n_z_samples_train=2, n_z_samples_test=7)
    assert model.n_z_samples == 2
    model.eval()
    assert model.n_z_samples == 7


def test_convnp_global_latent_shape(small_models):
    model = small_models()["convnp_global"]()
    X_cntxt, Y_cntxt, X_trgt, _ = get_task()
    _, z_samples, q_zCc, _ = model(X_cntxt, Y_cntxt, X_trgt)

    # flattened local latents followed by the global ones
    assert q_zCc.event_shape == (model.n_induced * model.z_dim + model.n_global_channels,)
    assert z_samples.shape == (3, BATCH_SIZE) + q_zCc.event_shape


def test_convcnp_grid_covers_inputs(small_models):
    model = small_models()["convcnp"](margin=0.5)
    X_cntxt = torch.tensor([[[-1.0], [0.5]]])
    X_trgt = torch.tensor([[[2.0]]])
    model.set_induced(X_cntxt, X_trgt)

    assert model.X_induced[0].item() == pytest.approx(-1.5)
    assert model.X_induced[-1].item() == pytest.approx(2.5)
    assert model.n_induced == round(model.points_per_unit * 4) + 1


def test_invalid_encoded_path(small_models):
    with pytest.raises(ValueError):
        small_models()["np"](encoded_path="deterministic")

    with pytest.raises(ValueError):
        small_models()["convcnp"](encoded_path="latent")


def test_noise_models():
    suffstat = torch.randn(3, BATCH_SIZE, N_TRGT, 2)

    loc, scale = get_noise_model("het", 1)(suffstat)
    assert loc.shape == scale.shape == (3, BATCH_SIZE, N_TRGT, 1)
    assert (scale >= 0.01).all()

    fixed = get_noise_model("fixed", 1, sigma=0.02, is_learn_sigma=False)
    loc, scale = fixed(suffstat[..., :1])
    assert torch.allclose(scale, torch.full_like(loc, 0.02))
    assert len(list(fixed.parameters())) == 0
    assert len(list(FixedNoise(1).parameters())) == 1

    amortised = AmortisedNoise(1, n_channels=4)
    loc, scale = amortised(torch.randn(3, BATCH_SIZE, N_TRGT, amortised.n_suffstat))
    # single scale per task
    assert torch.allclose(scale, scale[:, :, :1].expand_as(scale))

    with pytest.raises(ValueError):
        get_noise_model("poisson", 1)


def test_amortised_noise_model(small_models):
    model = small_models()["convnp"](noise="amortised")
    p_yCc, *_ = model(*get_task()[:3])
    scale = p_yCc.base_dist.scale
    assert torch.allclose(scale, scale[:, :, :1].expand_as(scale))


@pytest.mark.parametrize("model_name", ["convcnp"] + LATENT_MODELS)
def test_predict(small_models, model_name):
    model = small_models(n_z_samples=3)[model_name]()
    X_cntxt, Y_cntxt, X_trgt, _ = get_task()

    mean, lower, upper, samples = predict(
        model, X_cntxt, Y_cntxt, X_trgt, n_samples=4, n_z_samples=8
    )

    assert mean.shape == lower.shape == upper.shape == (BATCH_SIZE, N_TRGT, 1)
    assert (lower <= mean).all() and (mean <= upper).all()
    assert model.training

    if model_name == "convcnp":
        assert samples is None
    else:
        assert samples.shape == (4, BATCH_SIZE, N_TRGT, 1)
        assert model.n_z_samples_test == 3
