import argparse
import os
import sys
from functools import partial

import torch.nn as nn
from scipy.stats import randint

from convnps import (
    AttnLNP,
    CNPFLoss,
    ConvCNP,
    ConvLNP,
    ELBOLossLNPF,
    LNP,
    NLLLossLNPF,
)
from convnps.architectures import (
    CNN,
    MLP,
    ResConvBlock,
    get_kernel_size,
    merge_flat_input,
)
from experiment.data import TaskSampler, get_process
from experiment.evaluate import evaluate_regimes, get_eval_samplers
from experiment.helpers import set_seed
from experiment.train import load_model, train_model

DATASETS = [
    "eq-small",
    "eq",
    "matern52",
    "noisy-mixture",
    "weakly-periodic",
    "sawtooth",
    "mixture",
]
MODELS = [
    "convcnp",
    "convnp",
    "convnp-global-sum",
    "convnp-global-mean",
    "anp",
    "np",
    "convnp-het",
    "anp-het",
    "np-het",
]
LOSSES = ["loglik", "loglik-iw", "elbo"]


def get_data_config(data_name):
    """Return the hyperparameters that depend on the dataset."""
    data_name = data_name.lower()

    if data_name == "eq-small":
        return dict(
            receptive_field=1,
            points_per_unit=32,
            num_context=randint(0, 51),
            num_target=randint(50, 51),
            n_channels=16,
            dim_embedding=32,
        )

    if data_name in ["eq", "matern52"]:
        receptive_field = 2
    elif data_name in ["noisy-mixture", "weakly-periodic"]:
        receptive_field = 4
    elif data_name in ["sawtooth", "mixture"]:
        receptive_field = 16
    else:
        raise ValueError(f"Unknown data {data_name}.")

    # sawtooth and mixture need more points to be identified
    n_points = 100 if receptive_field == 16 else 50

    return dict(
        receptive_field=receptive_field,
        points_per_unit=64,
        num_context=randint(0, n_points + 1),
        num_target=randint(n_points, n_points + 1),
        n_channels=64,
        dim_embedding=128,
    )


def get_Loss(model_name, loss_name):
    """Return the (uninitialized) loss, checking that it can be used with the model."""
    if model_name not in MODELS:
        raise ValueError(f"Unknown model {model_name}.")

    if model_name == "convcnp":
        if loss_name == "loglik":
            return CNPFLoss
        elif loss_name in ["elbo", "loglik-iw"]:
            raise ValueError(
                f"Losses elbo and loglik-iw not applicable to the ConvCNP, got {loss_name}."
            )

    elif loss_name in ["loglik", "loglik-iw"]:
        return NLLLossLNPF
    elif loss_name == "elbo":
        return ELBOLossLNPF

    raise ValueError(f"Unknown loss {loss_name}.")


def get_model(
    model_name,
    loss_name,
    receptive_field,
    points_per_unit,
    n_channels,
    dim_embedding,
    n_blocks=8,
    n_layers=3,
    z_dim=16,
    n_global_channels=16,
    sigma=2e-2,
    **kwargs,
):
    """Return the correct (uninitialized) model."""

    # PARAMETERS
    neuralproc_kwargs = dict(x_dim=1, y_dim=1)

    is_het = model_name.endswith("-het")
    model_name = model_name[: -len("-het")] if is_het else model_name

    if is_het or model_name == "convcnp":
        neuralproc_kwargs["noise"] = "het"
    else:
        neuralproc_kwargs["noise"] = "fixed"
        neuralproc_kwargs["noise_kwargs"] = dict(sigma=sigma, is_learn_sigma=False)

    if model_name != "convcnp":
        if loss_name == "elbo":
            n_z_samples = 5
            # the targets contain the context, see `TaskSampler(is_add_cntxts_to_trgts=True)`
            neuralproc_kwargs["is_q_zCct"] = True
            neuralproc_kwargs["is_cntxt_in_trgt"] = True
        elif loss_name == "loglik-iw":
            n_z_samples = 20
            neuralproc_kwargs["is_q_zCct"] = True
        else:
            n_z_samples = 20

        neuralproc_kwargs["n_z_samples_train"] = n_z_samples
        neuralproc_kwargs["n_z_samples_test"] = n_z_samples

    if model_name.startswith("conv"):
        ConvNet = partial(
            CNN,
            ConvBlock=ResConvBlock,
            Conv=nn.Conv1d,
            n_blocks=n_blocks,
            is_chan_last=True,
            kernel_size=get_kernel_size(receptive_field, points_per_unit, n_blocks),
        )
        neuralproc_kwargs.update(
            dict(
                r_dim=n_channels,
                points_per_unit=points_per_unit,
                margin=1,
                CNN=ConvNet,
            )
        )

    else:
        SubMLP = partial(MLP, n_hidden_layers=n_layers, hidden_size=dim_embedding)
        neuralproc_kwargs.update(
            dict(
                r_dim=dim_embedding,
                XYEncoder=merge_flat_input(SubMLP, is_sum_merge=True),
                Decoder=merge_flat_input(SubMLP, is_sum_merge=True),
                LatentEncoder=SubMLP,
            )
        )

    if model_name == "convcnp":
        Model = partial(ConvCNP, **neuralproc_kwargs)

    elif model_name in ["convnp", "convnp-global-sum", "convnp-global-mean"]:
        if model_name == "convnp":
            neuralproc_kwargs["n_global_channels"] = 0
        else:
            neuralproc_kwargs["n_global_channels"] = n_global_channels
            neuralproc_kwargs["pooling_type"] = model_name.split("-")[-1]

        Model = partial(
            ConvLNP,
            z_dim=z_dim,
            CNNPostZ=ConvNet,
            # decoding on the grid for all samples at once is memory heavy
            n_z_samples_batch=4,
            **neuralproc_kwargs,
        )

    elif model_name == "anp":
        Model = partial(
            AttnLNP,
            attention="transformer",
            attention_kwargs=dict(n_heads=8),
            **neuralproc_kwargs,
        )

    elif model_name == "np":
        Model = partial(LNP, encoded_path="both", **neuralproc_kwargs)

    else:
        raise ValueError(f"Unknown model {model_name}.")

    return Model


def main(args):

    # CONFIGURATION
    data_config = get_data_config(args.data)
    Loss = get_Loss(args.model, args.loss)
    Model = get_model(args.model, args.loss, **data_config)
    process = get_process(args.data)

    sampler_kwargs = dict(
        num_context=data_config["num_context"],
        num_target=data_config["num_target"],
        is_add_cntxts_to_trgts=args.loss == "elbo",
    )

    suffix = os.path.join(args.model, args.loss, args.data)
    chckpnt_dirname = os.path.join(args.models_dir, suffix)

    if args.evaluate:
        set_seed(args.seed)
        # use the best model for evaluation
        trainer = load_model(Model, Loss, chckpnt_dirname, device=args.device)
        return evaluate_regimes(
            trainer,
            get_eval_samplers(
                process,
                data_config["num_context"],
                data_config["num_target"],
                is_add_cntxts_to_trgts=sampler_kwargs["is_add_cntxts_to_trgts"],
            ),
            n_batches=args.n_test_batches,
        )

    # TRAINING
    return train_model(
        Model,
        Loss,
        TaskSampler(process, **sampler_kwargs),
        chckpnt_dirname,
        output_dirname=os.path.join(args.output_dir, suffix),
        starting_epoch=args.starting_epoch,
        epochs=args.epochs,
        batches_per_epoch=args.batches_per_epoch,
        n_eval_batches=args.n_eval_batches,
        fixed_sigma_epochs=args.fixed_sigma_epochs,
        device=args.device,
        lr=args.lr,
        seed=args.seed,
    )


def parse_arguments(args_to_parse):
    parser = argparse.ArgumentParser(
        description="Train or evaluate neural processes on synthetic 1D processes."
    )
    parser.add_argument(
        "--data", type=str, required=True, help="Dataset.", choices=DATASETS
    )
    parser.add_argument(
        "--model", type=str, required=True, help="Model.", choices=MODELS
    )
    parser.add_argument("--loss", type=str, required=True, help="Loss.", choices=LOSSES)
    parser.add_argument(
        "--starting-epoch",
        type=int,
        default=1,
        help="Set to a number greater than one to continue training from the most recent checkpoint.",
    )
    parser.add_argument(
        "--epochs", type=int, default=20, help="Number of epochs to train for."
    )
    parser.add_argument("--evaluate", action="store_true", help="Evaluate model.")
    parser.add_argument(
        "--models-dir",
        type=str,
        default="models",
        help="Directory to store models in.",
    )

    # General optional args
    general = parser.add_argument_group("General Options")
    general.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Directory to store the plots in.",
    )
    general.add_argument("--lr", type=float, default=5e-4, help="Learning rate.")
    general.add_argument(
        "--batches-per-epoch",
        type=int,
        default=2 ** 14 // 16,
        help="Number of training batches (of 16 tasks) per epoch.",
    )
    general.add_argument(
        "--n-eval-batches",
        type=int,
        default=256,
        help="Number of validation batches after every epoch.",
    )
    general.add_argument(
        "--n-test-batches",
        type=int,
        default=10000,
        help="Number of batches for each evaluation task.",
    )
    general.add_argument(
        "--fixed-sigma-epochs",
        type=int,
        default=0,
        help="Number of epochs during which the observation noise is held fixed.",
    )
    general.add_argument("--device", type=str, default=None, help="Device.")
    general.add_argument("--seed", type=int, default=None, help="Random seed.")

    args = parser.parse_args(args_to_parse)

    if args.starting_epoch < 1:
        parser.error("--starting-epoch should be at least 1.")

    return args


if __name__ == "__main__":
    args = parse_arguments(sys.argv[1:])
    main(args)
