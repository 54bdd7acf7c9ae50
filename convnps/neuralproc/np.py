"""Neural processes with a mean pooled representation of the context set."""
from functools import partial

from convnps.architectures import MLP, merge_flat_input

from .base import LatentNeuralProcessFamily, NeuralProcessFamily

__all__ = ["CNP", "LNP"]


class CNP(NeuralProcessFamily):
    """
    Conditional neural process [1]: every context pair is encoded separately and the
    encodings are averaged into a single representation shared by all targets.

    Parameters
    ----------
    x_dim : int

    y_dim : int

    XYEncoder : nn.Module, optional
        Encoder (unitialized) of each context pair, called as
        `XYEncoder(x_transf_dim, y_dim, r_dim)`. E.g. `merge_flat_input(MLP)` for an
        MLP of `[x;y]` or `discard_ith_arg(MLP, 0)` for an MLP of `y` only. `None` sums
        an MLP of `x` and `y`.

    kwargs :
        Additional arguments to `NeuralProcessFamily`.

    References
    ----------
    [1] Garnelo, Marta, et al. "Conditional neural processes." arXiv preprint
        arXiv:1807.01613 (2018).
    """

    _valid_paths = ["deterministic"]

    def __init__(self, x_dim, y_dim, XYEncoder=None, **kwargs):
        kwargs.setdefault("encoded_path", "deterministic")
        super().__init__(x_dim, y_dim, **kwargs)

        if XYEncoder is None:
            XYEncoder = self.dflt_Modules["XYEncoder"]
        self.xy_encoder = XYEncoder(self.x_transf_dim, self.y_dim, self.r_dim)

        self.reset_parameters()

    @property
    def dflt_Modules(self):
        Modules = NeuralProcessFamily.dflt_Modules.__get__(self)
        Modules["XYEncoder"] = merge_flat_input(
            partial(
                MLP, n_hidden_layers=2, is_force_hid_smaller=True, hidden_size=self.r_dim
            ),
            is_sum_merge=True,
        )
        return Modules

    def encode_globally(self, X_cntxt, Y_cntxt):
        batch_size, n_cntxt, _ = X_cntxt.shape

        if n_cntxt == 0:
            # the mean of an empty set is taken to be zero
            return X_cntxt.new_zeros(batch_size, 1, self.r_dim)

        # size = [batch_size, 1, r_dim]
        return self.xy_encoder(X_cntxt, Y_cntxt).mean(dim=1, keepdim=True)

    def trgt_dependent_representation(self, _, __, R, X_trgt):
        batch_size, n_trgt, _ = X_trgt.shape
        # size = [1, batch_size, n_trgt, r_dim]
        return R.expand(batch_size, n_trgt, self.r_dim).unsqueeze(0)


class LNP(LatentNeuralProcessFamily, CNP):
    """
    (Latent) neural process [1]: a global latent is inferred from the mean pooled
    representation of the context set.

    Parameters
    ----------
    x_dim : int

    y_dim : int

    encoded_path : {"latent", "both"}
        `"latent"` decodes from the latent only [1] while `"both"` also gives the
        deterministic representation to the decoder [2].

    kwargs :
        Additional arguments to `CNP` and `LatentNeuralProcessFamily`.

    References
    ----------
    [1] Garnelo, Marta, et al. "Neural processes." arXiv preprint
        arXiv:1807.01622 (2018).
    [2] Kim, Hyunjik, et al. "Attentive neural processes." arXiv preprint
        arXiv:1901.05761 (2019).
    """

    def __init__(self, x_dim, y_dim, encoded_path="latent", **kwargs):
        super().__init__(x_dim, y_dim, encoded_path=encoded_path, **kwargs)

    @property
    def dflt_Modules(self):
        Modules = CNP.dflt_Modules.__get__(self)
        Modules.update(LatentNeuralProcessFamily.dflt_Modules.__get__(self))
        return Modules

    def trgt_dependent_representation(self, X_cntxt, z_samples, R, X_trgt):
        n_z_samples = z_samples.size(0)
        batch_size, n_trgt, _ = X_trgt.shape

        # size = [n_z_samples, batch_size, 1, r_dim]
        if self.encoded_path == "both":
            R_trgt = self.merge_r_z(R, z_samples)
        elif self.z_dim != self.r_dim:
            R_trgt = self.reshaper_z(z_samples)
        else:
            R_trgt = z_samples

        return R_trgt.expand(n_z_samples, batch_size, n_trgt, self.r_dim)
