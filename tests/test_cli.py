import pytest
import torch

import train
from convnps import AttnLNP, CNPFLoss, ConvCNP, ConvLNP, ELBOLossLNPF, LNP, NLLLossLNPF
from experiment.data import TaskSampler, get_process


def test_parse_arguments_defaults():
    args = train.parse_arguments(["--data", "eq", "--model", "convnp", "--loss", "elbo"])
    assert args.starting_epoch == 1
    assert args.epochs == 20
    assert not args.evaluate
    assert args.models_dir == "models"


def test_parse_arguments_invalid():
    with pytest.raises(SystemExit):
        train.parse_arguments(["--data", "eq", "--model", "gp", "--loss", "elbo"])

    with pytest.raises(SystemExit):
        train.parse_arguments(["--data", "eq", "--model", "np"])

    with pytest.raises(SystemExit):
        train.parse_arguments(
            ["--data", "eq", "--model", "np", "--loss", "elbo", "--starting-epoch", "0"]
        )


@pytest.mark.parametrize(
    "model_name, loss_name, expected",
    [
        ("convcnp", "loglik", CNPFLoss),
        ("convnp", "loglik", NLLLossLNPF),
        ("anp-het", "loglik-iw", NLLLossLNPF),
        ("np", "elbo", ELBOLossLNPF),
    ],
)
def test_get_Loss(model_name, loss_name, expected):
    assert train.get_Loss(model_name, loss_name) is expected


@pytest.mark.parametrize(
    "model_name, loss_name",
    [("convcnp", "elbo"), ("convcnp", "loglik-iw"), ("np", "mse"), ("gp", "loglik")],
)
def test_get_Loss_invalid(model_name, loss_name):
    with pytest.raises(ValueError):
        train.get_Loss(model_name, loss_name)


def test_get_data_config():
    config = train.get_data_config("eq-small")
    assert config["points_per_unit"] == 32
    assert config["num_context"].support() == (0, 50)

    config = train.get_data_config("sawtooth")
    assert config["receptive_field"] == 16
    assert config["num_target"].support() == (100, 100)

    with pytest.raises(ValueError):
        train.get_data_config("mnist")


def test_get_model():
    config = dict(
        receptive_field=1,
        points_per_unit=8,
        n_channels=8,
        dim_embedding=8,
        n_blocks=2,
        n_layers=1,
    )

    model = train.get_model("convcnp", "loglik", **config)()
    assert isinstance(model, ConvCNP)

    model = train.get_model("convnp-global-mean", "elbo", **config)()
    assert isinstance(model, ConvLNP)
    assert model.n_global_channels == 16
    assert model.is_q_zCct and model.is_cntxt_in_trgt
    assert model.n_z_samples_train == 5

    model = train.get_model("anp", "loglik-iw", **config)()
    assert isinstance(model, AttnLNP)
    assert model.is_q_zCct and not model.is_cntxt_in_trgt
    # observation noise is fixed and not learned
    assert len(list(model.noise_model.parameters())) == 0

    model = train.get_model("np-het", "loglik", **config)()
    assert isinstance(model, LNP)
    assert model.encoded_path == "both"
    assert not model.is_q_zCct
    assert model.noise_model.n_suffstat == 2


def test_evaluate_without_model(tmp_path):
    args = train.parse_arguments(
        [
            "--data",
            "eq-small",
            "--model",
            "convcnp",
            "--loss",
            "loglik",
            "--evaluate",
            "--models-dir",
            str(tmp_path),
            "--device",
            "cpu",
        ]
    )
    with pytest.raises(FileNotFoundError):
        train.main(args)


@pytest.mark.parametrize("model_name", ["convcnp", "convnp"])
def test_conv_models_predict_on_data_scale(model_name):
    config = train.get_data_config("eq")
    model = train.get_model(model_name, "loglik", **config)().eval()
    sampler = TaskSampler(
        get_process("eq"),
        batch_size=4,
        num_context=config["num_context"],
        num_target=config["num_target"],
    )
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = sampler()

    with torch.no_grad():
        p_yCc, *_ = model(X_cntxt, Y_cntxt, X_trgt)

    # at initialization predictions are on the scale of the data
    assert p_yCc.mean.abs().mean() < 10 * Y_trgt.abs().mean() + 1
