from functools import partial

import pytest
import torch.nn as nn

from convnps import AttnLNP, ConvCNP, ConvLNP, LNP
from convnps.architectures import CNN, ResConvBlock
from experiment.helpers import set_seed


@pytest.fixture(autouse=True)
def seed():
    set_seed(123)


@pytest.fixture
def small_models():
    """Factory of small versions of every model, called as `small_models(n_z_samples=3)`."""
    return get_small_models


def get_small_models(n_z_samples=3):
    """Small versions of every model, indexed by name."""
    ConvNet = partial(
        CNN,
        ConvBlock=ResConvBlock,
        Conv=nn.Conv1d,
        n_blocks=2,
        is_chan_last=True,
        kernel_size=3,
    )
    latent_kwargs = dict(n_z_samples_train=n_z_samples, n_z_samples_test=n_z_samples)

    return dict(
        convcnp=partial(ConvCNP, 1, 1, r_dim=8, points_per_unit=5, CNN=ConvNet),
        convnp=partial(
            ConvLNP,
            1,
            1,
            r_dim=8,
            z_dim=2,
            points_per_unit=5,
            CNN=ConvNet,
            noise="fixed",
            **latent_kwargs,
        ),
        convnp_global=partial(
            ConvLNP,
            1,
            1,
            r_dim=8,
            z_dim=2,
            n_global_channels=2,
            pooling_type="sum",
            points_per_unit=5,
            CNN=ConvNet,
            **latent_kwargs,
        ),
        anp=partial(
            AttnLNP,
            1,
            1,
            r_dim=12,
            attention="transformer",
            attention_kwargs=dict(n_heads=3),
            **latent_kwargs,
        ),
        np=partial(LNP, 1, 1, r_dim=10, encoded_path="both", **latent_kwargs),
    )
