import random

import numpy as np
import torch
from skorch.callbacks import Callback

__all__ = ["set_seed", "FixRandomSeed", "count_parameters"]


def set_seed(seed):
    """Seed python, numpy and torch. Does nothing if `seed` is `None`."""
    if seed is None:
        return

    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


class FixRandomSeed(Callback):
    """Seed everything when the trainer is initialized, before the weights are sampled.

    Parameters
    ----------
    seed : int, optional

    is_cudnn_deterministic : bool, optional
        Whether to also force deterministic cuDNN kernels, which are slower.
    """

    def __init__(self, seed=123, is_cudnn_deterministic=False):
        self.seed = seed
        self.is_cudnn_deterministic = is_cudnn_deterministic

    def initialize(self):
        set_seed(self.seed)
        torch.backends.cudnn.deterministic = self.is_cudnn_deterministic
        return self


def count_parameters(model):
    """Number of trainable parameters of a module."""
    return sum(p.numel() for p in model.parameters() if p.requires_grad)
