import torch.nn as nn

from convnps.utils.initialization import linear_init

__all__ = ["MLP"]


class MLP(nn.Module):
    """General MLP class acting on the last dimension of its input.

    Any input of size `[*, input_size]` gives an output of size `[*, output_size]`,
    so the same perceptron is shared across all leading (batch, sample, point)
    dimensions.

    Parameters
    ----------
    input_size: int

    output_size: int

    hidden_size: int, optional
        Number of hidden neurones.

    n_hidden_layers: int, optional
        Number of hidden layers.

    activation: callable, optional
        Activation function. E.g. `nn.ReLU()`.

    is_force_hid_smaller : bool, optional
        Whether to force the hidden dimensions to be smaller or equal than in and out.
        If not, it forces the hidden dimension to be larger or equal than in or out.
    """

    def __init__(
        self,
        input_size,
        output_size,
        hidden_size=32,
        n_hidden_layers=1,
        activation=nn.ReLU(),
        is_force_hid_smaller=False,
    ):
        super().__init__()

        self.input_size = input_size
        self.output_size = output_size
        self.hidden_size = hidden_size
        self.n_hidden_layers = n_hidden_layers

        if is_force_hid_smaller and self.hidden_size > max(
            self.output_size, self.input_size
        ):
            self.hidden_size = max(self.output_size, self.input_size)

        self.activation = activation

        self.to_hidden = nn.Linear(self.input_size, self.hidden_size)
        self.linears = nn.ModuleList(
            [
                nn.Linear(self.hidden_size, self.hidden_size)
                for _ in range(self.n_hidden_layers - 1)
            ]
        )
        self.out = nn.Linear(self.hidden_size, self.output_size)

        self.reset_parameters()

    def forward(self, x):
        x = self.activation(self.to_hidden(x))

        for linear in self.linears:
            x = self.activation(linear(x))

        return self.out(x)

    def reset_parameters(self):
        linear_init(self.to_hidden, activation=self.activation)
        for lin in self.linears:
            linear_init(lin, activation=self.activation)
        linear_init(self.out)
