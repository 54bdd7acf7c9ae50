import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import torch

from convnps.utils.predict import predict
from experiment.data.processes import GaussianProcess

from .helpers import plot_config

DFLT_FIGSIZE = (11, 5)

__all__ = ["plot_task", "plot_losses"]


def save_fig(fig, path):
    """Save a figure, creating the missing directories, and close it."""
    dirname = os.path.dirname(path)
    if dirname != "":
        os.makedirs(dirname, exist_ok=True)
    fig.savefig(path, dpi=200, bbox_inches="tight")
    plt.close(fig)


def plot_losses(history, path=None, title=None, figsize=DFLT_FIGSIZE):
    """
    Plot the training and validation losses of a skorch history, with two standard errors
    around the validation loss when they were recorded (see `LossStandardError`).
    """
    epochs = np.array([ep["epoch"] for ep in history])
    valid_losses = np.array([ep["valid_loss"] for ep in history])

    with plot_config():
        fig, ax = plt.subplots(1, 1, figsize=figsize)

        ax.plot(epochs, [ep["train_loss"] for ep in history], label="Training")
        ax.plot(epochs, valid_losses, label="Validation")

        if all("valid_loss_err" in ep for ep in history):
            valid_errs = np.array([ep["valid_loss_err"] for ep in history])
            ax.fill_between(
                epochs, valid_losses - valid_errs, valid_losses + valid_errs, alpha=0.2
            )

        ax.legend()
        ax.set(xlabel="Epoch", ylabel="Loss", title=title)

    if path is not None:
        save_fig(fig, path)

    return fig


def plot_task(
    model,
    sampler,
    path=None,
    title=None,
    n_points=400,
    margin=1,
    n_samples=10,
    figsize=DFLT_FIGSIZE,
    plot_config_kwargs={},
):
    """
    Plot the predictions of a model on a task sampled from `sampler`, and compare them to the
    exact posterior if the underlying process is a Gaussian process.

    Parameters
    ----------
    model : NeuralProcessFamily
        Model to predict with.

    sampler : TaskSampler
        Sampler of tasks. Only the first task of a batch is plotted.

    path : str, optional
        Where to save the figure. If `None` does not save it.

    title : str, optional
        Title of the figure.

    n_points : int, optional
        Number of features at which to predict.

    margin : float, optional
        Distance by which the plot extends beyond the context and target features.

    n_samples : int, optional
        Number of sampled mean functions to plot for latent models.

    figsize : tuple, optional

    plot_config_kwargs : dict, optional
        Arguments to `plot_config`.

    Return
    ------
    fig : plt.Figure
    """
    X_cntxt, Y_cntxt, X_trgt, Y_trgt = (t[:1] for t in sampler())

    X_all = torch.cat([X_cntxt, X_trgt], dim=1)
    x = np.linspace(X_all.min().item() - margin, X_all.max().item() + margin, n_points)

    device = next(model.parameters()).device
    mean, lower, upper, samples = predict(
        model,
        X_cntxt.to(device),
        Y_cntxt.to(device),
        torch.from_numpy(x).float().view(1, -1, 1).to(device),
        n_samples=n_samples,
    )

    xc, yc = X_cntxt[0, :, 0].numpy(), Y_cntxt[0, :, 0].numpy()
    xt, yt = X_trgt[0, :, 0].numpy(), Y_trgt[0, :, 0].numpy()

    with plot_config(**plot_config_kwargs):
        fig, ax = plt.subplots(1, 1, figsize=figsize)

        ax.scatter(xt, yt, c="r", label="Target set")
        ax.scatter(xc, yc, c="k", label="Context set")

        if isinstance(sampler.process, GaussianProcess):
            gp_mean, gp_std = sampler.process.posterior(
                xc.reshape(-1, 1), yc.reshape(-1, 1), x.reshape(-1, 1)
            )
            ax.plot(x, gp_mean, c="b", label="GP")
            ax.plot(x, gp_mean - 2 * gp_std, c="b", linestyle="--")
            ax.plot(x, gp_mean + 2 * gp_std, c="b", linestyle="--")

        ax.plot(x, mean[0, :, 0].cpu().numpy(), c="g", label="Model output")
        ax.fill_between(
            x,
            lower[0, :, 0].cpu().numpy(),
            upper[0, :, 0].cpu().numpy(),
            color="g",
            alpha=0.2,
        )

        if samples is not None:
            for sample in samples[:, 0, :, 0].cpu().numpy():
                ax.plot(x, sample, c="g", lw=0.5)

        ax.legend()
        if title is not None:
            ax.set_title(title)

    if path is not None:
        save_fig(fig, path)

    return fig
