import torch

__all__ = ["predict"]


def predict(model, X_cntxt, Y_cntxt, X_trgt, n_samples=10, n_z_samples=100):
    """
    Predict at the target features using a trained `NeuralProcessFamily` model.

    Parameters
    ----------
    model : NeuralProcessFamily

    X_cntxt, Y_cntxt, X_trgt : torch.Tensor
        Context and target sets, see `NeuralProcessFamily.forward`.

    n_samples : int, optional
        Number of sampled mean functions to return (latent models only).

    n_z_samples : int, optional
        Number of latent samples used to estimate the mean and the bounds. At least `n_samples`.

    Return
    ------
    mean : torch.Tensor, size=[batch_size, n_trgt, y_dim]
        Predictive mean.

    lower, upper : torch.Tensor, size=[batch_size, n_trgt, y_dim]
        Bounds of the predictive interval at 2 standard deviations, accounting both for the
        uncertainty of the mean function and the observation noise.

    samples : torch.Tensor, size=[n_samples, batch_size, n_trgt, y_dim]
        Sampled mean functions. `None` for models without latent variables.
    """
    is_latent = hasattr(model, "n_z_samples_test")
    was_training = model.training
    model.eval()

    if is_latent:
        old_n_z_samples_test = model.n_z_samples_test
        model.n_z_samples_test = max(n_samples, n_z_samples)

    try:
        with torch.no_grad():
            p_yCc, *_ = model(X_cntxt, Y_cntxt, X_trgt)
    finally:
        if is_latent:
            model.n_z_samples_test = old_n_z_samples_test
        model.train(was_training)

    # size = [n_z_samples, batch_size, n_trgt, y_dim]
    loc_ys = p_yCc.base_dist.loc
    scale_ys = p_yCc.base_dist.scale

    mean = loc_ys.mean(0)
    # uncertainty of the mean function plus observation noise
    var_f = loc_ys.var(0, unbiased=False)
    std = (var_f + scale_ys.pow(2).mean(0)).sqrt()
    lower, upper = mean - 2 * std, mean + 2 * std

    samples = loc_ys[:n_samples] if is_latent else None

    return mean, lower, upper, samples
