import logging
import os

import torch
from skorch import NeuralNet
from skorch.callbacks import Callback, Checkpoint, LoadInitState
from skorch.helper import predefined_split
from skorch.utils import to_tensor
from torch.optim import Adam

from .data import TaskDataset
from .evaluate import eval_loss, report_loss, standard_error
from .helpers import FixRandomSeed, count_parameters
from .visualize import plot_losses, plot_task

__all__ = [
    "NeuralProcessNet",
    "FixedSigmaWarmup",
    "LossStandardError",
    "PlotTask",
    "get_checkpoints",
    "train_model",
    "load_model",
]

MOD_SUMM_FILENAME = "model_summary.txt"
BEST_PARAMS_FILENAME = "best_params.pt"
RECENT_PARAMS_FILENAME = "recent_params.pt"
LOSSES_FILENAME = "losses.png"

logger = logging.getLogger(__name__)


class NeuralProcessNet(NeuralNet):
    """
    `NeuralNet` whose criterion knows whether it is training, and which replaces NaN losses by
    zero (i.e. skips the update) instead of corrupting the parameters.
    """

    def get_loss(self, y_pred, y_true, X=None, training=False):
        """Return the loss for this batch."""
        y_true = to_tensor(y_true, device=self.device)

        if isinstance(self.criterion_, torch.nn.Module):
            self.criterion_.train(training)

        loss = self.criterion_(y_pred, y_true)

        # only training steps are NaN safe
        if training and torch.isnan(loss).any():
            logger.warning("Encountered NaN loss! Returning zero.")
            loss = torch.zeros_like(loss, requires_grad=True)

        return loss


class FixedSigmaWarmup(Callback):
    """
    Replace the predictive scale by the criterion's `fixed_sigma` during the first `n_epochs`
    epochs, to force the model to fit the data before learning the noise.
    """

    def __init__(self, n_epochs=0):
        self.n_epochs = n_epochs

    def on_epoch_begin(self, net, **kwargs):
        # the history already contains the current epoch
        epoch = len(net.history)
        net.criterion_.is_fixed_sigma = epoch <= self.n_epochs

    def on_train_end(self, net, **kwargs):
        net.criterion_.is_fixed_sigma = False


class LossStandardError(Callback):
    """Record `valid_loss_err`, two standard errors of the mean of the validation losses."""

    def on_epoch_begin(self, net, **kwargs):
        self.losses_ = []

    def on_batch_end(self, net, batch=None, training=None, **kwargs):
        if not training:
            self.losses_.append(kwargs["loss"].item())

    def on_epoch_end(self, net, **kwargs):
        if len(self.losses_) > 0:
            net.history.record("valid_loss_err", standard_error(self.losses_))


class PlotTask(Callback):
    """Plot the predictions on a new task at the end of every epoch.

    Parameters
    ----------
    sampler : TaskSampler
        Sampler from which to take the task.

    dirname : str, optional
        Directory in which to save `epoch{n}.png`.
    """

    def __init__(self, sampler, dirname="output"):
        self.sampler = sampler
        self.dirname = dirname

    def on_epoch_end(self, net, **kwargs):
        epoch = len(net.history)
        plot_task(
            net.module_,
            self.sampler,
            path=os.path.join(self.dirname, f"epoch{epoch}.png"),
            title=f"Epoch {epoch}",
        )


def get_checkpoints(chckpnt_dirname):
    """
    Return the checkpoint of the best parameters (monitoring the validation loss) and the
    checkpoint of the most recent state (parameters, optimizer, criterion and history).
    """
    chckpt_best = Checkpoint(
        dirname=chckpnt_dirname,
        monitor="valid_loss_best",
        f_params=BEST_PARAMS_FILENAME,
        f_optimizer=None,
        f_criterion=None,
        f_history=None,
    )
    chckpt_recent = Checkpoint(
        dirname=chckpnt_dirname,
        monitor=None,
        f_params=RECENT_PARAMS_FILENAME,
        f_optimizer="recent_optimizer.pt",
        f_criterion="recent_criterion.pt",
        f_history="history.json",
        event_name=None,
    )
    return chckpt_best, chckpt_recent


def _get_net(Model, criterion, device=None, callbacks=[], **kwargs):
    if device is None:
        device = "cuda" if torch.cuda.is_available() else "cpu"

    return NeuralProcessNet(
        Model,
        criterion,
        device=device,
        callbacks=callbacks,
        # every item of the datasets is already a batch
        iterator_train__batch_size=None,
        iterator_valid__batch_size=None,
        warm_start=True,
        **kwargs,
    )


def train_model(
    Model,
    criterion,
    sampler,
    chckpnt_dirname,
    output_dirname=None,
    starting_epoch=1,
    epochs=20,
    batches_per_epoch=2048,
    n_eval_batches=256,
    fixed_sigma_epochs=0,
    device=None,
    lr=5e-4,
    optimizer=Adam,
    seed=None,
    callbacks=[],
    **kwargs,
):
    """
    Train a model on tasks sampled from `sampler`, checkpointing it every epoch.

    Parameters
    ----------
    Model : nn.Module
        The uninitialized model.

    criterion : nn.Module
        The uninitialized criterion (loss).

    sampler : TaskSampler
        Sampler of the training (and validation) tasks. New tasks are sampled at every epoch.

    chckpnt_dirname : str
        Directory where the best parameters and the most recent state are saved.

    output_dirname : str, optional
        Directory where to save the plot of a task after every epoch and the learning curves
        at the end of training. If `None` does not plot.

    starting_epoch : int, optional
        Epoch from which to start. If greater than one, training continues from the most
        recent state saved in `chckpnt_dirname`.

    epochs : int, optional
        Number of epochs to train for.

    batches_per_epoch : int, optional
        Number of training batches per epoch.

    n_eval_batches : int, optional
        Number of validation batches after every epoch.

    fixed_sigma_epochs : int, optional
        Number of epochs during which the predictive scale is fixed. See `FixedSigmaWarmup`.

    device : str, optional
        The compute device to be used (input to torch.device). If `None` uses
        "cuda" if available else "cpu".

    lr : float, optional
        Learning rate.

    optimizer : torch.optim.Optimizer, optional
        Optimizer.

    seed : int, optional
        Pseudo random seed to force deterministic results (on CUDA might still
        differ a little).

    callbacks : list, optional
        Additional callbacks to use.

    kwargs :
        Additional arguments to `NeuralNet`.

    Return
    ------
    trainer : NeuralProcessNet
        Trainer with the best parameters loaded.
    """
    is_continue_train = starting_epoch > 1
    chckpt_best, chckpt_recent = get_checkpoints(chckpnt_dirname)

    if is_continue_train:
        recent_params = os.path.join(chckpnt_dirname, RECENT_PARAMS_FILENAME)
        if not os.path.exists(recent_params):
            raise FileNotFoundError(
                f"Cannot continue training from epoch {starting_epoch}: {recent_params} does not exist."
            )

    train_dataset = TaskDataset(sampler, batches_per_epoch)
    valid_dataset = TaskDataset(sampler, n_eval_batches)

    callbacks = list(callbacks) + [
        ("fixed_sigma_warmup", FixedSigmaWarmup(fixed_sigma_epochs)),
        ("loss_standard_error", LossStandardError()),
        ("best_checkpoint", chckpt_best),
        ("recent_checkpoint", chckpt_recent),
    ]

    if output_dirname is not None:
        callbacks.append(("plot_task", PlotTask(sampler, dirname=output_dirname)))

    if is_continue_train:
        callbacks.append(("load_init_state", LoadInitState(chckpt_recent)))

    if seed is not None:
        callbacks.append(("fix_random_seed", FixRandomSeed(seed)))

    trainer = _get_net(
        Model,
        criterion,
        device=device,
        callbacks=callbacks,
        train_split=predefined_split(valid_dataset),
        optimizer=optimizer,
        lr=lr,
        max_epochs=epochs,
        **kwargs,
    )
    trainer.initialize()

    print(
        "\n--- {} {} ---\n".format(
            "Continuing" if is_continue_train else "Training", chckpnt_dirname
        ),
        flush=True,
    )
    print(
        "Number of parameters: {}".format(count_parameters(trainer.module_)),
        flush=True,
    )

    if not is_continue_train:
        # evaluate once before training
        report_loss(eval_loss(trainer, valid_dataset))

    trainer.fit(train_dataset)

    with open(os.path.join(chckpnt_dirname, MOD_SUMM_FILENAME), "w") as f:
        f.write(str(trainer.module_))

    if output_dirname is not None:
        plot_losses(
            trainer.history,
            path=os.path.join(output_dirname, LOSSES_FILENAME),
            title=chckpnt_dirname,
        )

    # even when training, use the best parameters
    trainer.load_params(checkpoint=chckpt_best)

    valid_loss, best_epoch = _best_loss(trainer)
    print(
        chckpnt_dirname,
        "| best epoch:",
        best_epoch,
        "| valid loss:",
        round_decimals(valid_loss, n=4),
        flush=True,
    )

    return trainer


def load_model(Model, criterion, chckpnt_dirname, device=None, **kwargs):
    """Return an initialized trainer with the best parameters saved in `chckpnt_dirname`."""
    best_params = os.path.join(chckpnt_dirname, BEST_PARAMS_FILENAME)
    if not os.path.exists(best_params):
        raise FileNotFoundError(f"No trained model found at {best_params}.")

    trainer = _get_net(Model, criterion, device=device, train_split=None, **kwargs)
    trainer.initialize()
    trainer.load_params(f_params=best_params)

    print(
        "Number of parameters: {}".format(count_parameters(trainer.module_)),
        flush=True,
    )

    return trainer


def round_decimals(x, n=4):
    if x is not None:
        pattern = "{:." + str(n) + "f}"
        x = float(pattern.format(x))
    return x


def _best_loss(trainer):
    """Return the best validation loss and its (1-indexed) epoch."""
    for epoch, history in enumerate(trainer.history[::-1]):
        if history.get("valid_loss_best", False):
            best_epoch = len(trainer.history) - epoch
            return history["valid_loss"], best_epoch
    return None, None
