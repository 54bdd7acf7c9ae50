import torch.nn as nn

__all__ = ["weights_init", "linear_init"]

# name understood by `nn.init.calculate_gain` of every supported activation
ACTIVATION_NAMES = {
    nn.ReLU: "relu",
    nn.LeakyReLU: "leaky_relu",
    nn.Tanh: "tanh",
    nn.Sigmoid: "sigmoid",
}


def weights_init(module, **kwargs):
    """Initialize the convolutional and linear layers of a module and its descendents.

    Descendents that already initialized themselves with `weights_init` (i.e. have
    `is_resetted`) are skipped as they might use a custom initialization.

    Parameters
    ----------
    module : nn.Module

    kwargs :
        Additional arguments to `linear_init`.
    """
    module.is_resetted = True
    for m in module.modules():
        if m is not module and getattr(m, "is_resetted", False):
            continue

        if isinstance(m, nn.modules.conv._ConvNd):
            nn.init.kaiming_normal_(m.weight, mode="fan_out")
        elif isinstance(m, nn.Linear):
            linear_init(m, **kwargs)


def linear_init(module, activation="relu"):
    """Initialize a linear layer for the activation that follows it, zeroing the bias.

    Parameters
    ----------
    module : nn.Linear

    activation : nn.Module or str, optional
        Activation applied to the outputs of `module`. `None` if there is none, in which
        case Glorot initialization is used.
    """
    if module.bias is not None:
        nn.init.zeros_(module.bias)

    if activation is None:
        return nn.init.xavier_uniform_(module.weight)

    if isinstance(activation, str):
        name, negative_slope = activation, 0
    else:
        name = ACTIVATION_NAMES.get(type(activation))
        negative_slope = getattr(activation, "negative_slope", 0)

    if name in ["relu", "leaky_relu"]:
        return nn.init.kaiming_uniform_(module.weight, a=negative_slope, nonlinearity=name)
    elif name in ["sigmoid", "tanh"]:
        return nn.init.xavier_uniform_(module.weight, gain=nn.init.calculate_gain(name))
    else:
        raise ValueError(f"Unknown activation={activation}.")
