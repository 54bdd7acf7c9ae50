import logging

import numpy as np

from .data import TaskDataset, TaskSampler, halve, uniform_range

__all__ = [
    "eval_loss",
    "standard_error",
    "report_loss",
    "get_eval_samplers",
    "evaluate_regimes",
]

logger = logging.getLogger(__name__)


def eval_loss(trainer, dataset, **kwargs):
    """Return the loss of each batch of `dataset`, computed without gradients.

    Parameters
    ----------
    trainer : skorch.NeuralNet
        Initialized trainer whose criterion and module are used.

    dataset : TaskDataset
        Batches on which to evaluate.

    kwargs :
        Additional arguments to `trainer.validation_step`.

    Return
    ------
    losses : np.ndarray, size=[n_batches]
    """
    trainer.module_.to(trainer.device)
    losses = []

    for batch in trainer.get_iterator(dataset, training=False):
        step = trainer.validation_step(batch, **kwargs)
        losses.append(step["loss"].item())

    return np.array(losses)


def standard_error(losses):
    """Two standard errors of the mean, using the unbiased sample standard deviation."""
    n_batches = len(losses)
    if n_batches < 2:
        return 0.0
    return float(2 * np.std(losses, ddof=1) / np.sqrt(n_batches))


def report_loss(losses):
    """Print and return the mean loss and two standard errors of the mean."""
    n_batches = len(losses)
    loss_value = float(np.mean(losses))
    loss_error = standard_error(losses)
    print(
        "Loss: {:.3f} +- {:.3f} ({} batches)".format(loss_value, loss_error, n_batches),
        flush=True,
    )
    return loss_value, loss_error


def get_eval_samplers(process, num_context, num_target, **kwargs):
    """
    Return the task samplers of every evaluation regime. Extrapolation halves the number of
    points as the contexts and targets are sampled from smaller ranges.

    Parameters
    ----------
    process : callable
        Stochastic process to sample from.

    num_context, num_target : scipy.stats frozen distribution
        Distribution of the number of context and target points used during training.

    kwargs :
        Additional arguments to `TaskSampler`.
    """
    return {
        "interpolation on training range": TaskSampler(
            process,
            x_context=uniform_range(-2, 2),
            x_target=uniform_range(-2, 2),
            num_context=num_context,
            num_target=num_target,
            **kwargs,
        ),
        "interpolation beyond training range": TaskSampler(
            process,
            x_context=uniform_range(2, 6),
            x_target=uniform_range(2, 6),
            num_context=num_context,
            num_target=num_target,
            **kwargs,
        ),
        "extrapolation beyond training range": TaskSampler(
            process,
            x_context=uniform_range(0, 2),
            x_target=uniform_range(2, 4),
            num_context=halve(num_context),
            num_target=halve(num_target),
            **kwargs,
        ),
    }


def evaluate_regimes(trainer, samplers, n_batches=10000):
    """Evaluate the trainer on every regime and return the `(loss, error)` of each."""
    results = dict()
    for name, sampler in samplers.items():
        print(f"Evaluation task: {name}", flush=True)
        logger.info(f"Evaluating on {n_batches} batches of {sampler.batch_size} tasks.")
        losses = eval_loss(trainer, TaskDataset(sampler, n_batches))
        results[name] = report_loss(losses)
    return results
