"""Neural processes where every target attends to the context set."""
import torch

from convnps.architectures import get_attender

from .base import LatentNeuralProcessFamily, NeuralProcessFamily
from .np import CNP

__all__ = ["AttnCNP", "AttnLNP"]


class AttnCNP(NeuralProcessFamily):
    """
    Attentive conditional neural process, the deterministic part of [1]. The
    representation of a target is an attention over the encoded context pairs, with the
    inputs as keys and queries.

    Parameters
    ----------
    x_dim : int

    y_dim : int

    XYEncoder : nn.Module, optional
        Encoder of each context pair. See `CNP`.

    attention : callable or str, optional
        Attention mechanism. See `get_attender`.

    attention_kwargs : dict, optional
        Additional arguments to `get_attender`.

    kwargs :
        Additional arguments to `NeuralProcessFamily`.

    References
    ----------
    [1] Kim, Hyunjik, et al. "Attentive neural processes." arXiv preprint
        arXiv:1901.05761 (2019).
    """

    _valid_paths = ["deterministic"]

    def __init__(
        self,
        x_dim,
        y_dim,
        XYEncoder=None,
        attention="scaledot",
        attention_kwargs={},
        **kwargs,
    ):
        kwargs.setdefault("encoded_path", "deterministic")
        super().__init__(x_dim, y_dim, **kwargs)

        if XYEncoder is None:
            XYEncoder = self.dflt_Modules["XYEncoder"]
        self.xy_encoder = XYEncoder(self.x_transf_dim, self.y_dim, self.r_dim)

        self.attender = get_attender(
            attention, self.x_transf_dim, self.r_dim, self.r_dim, **attention_kwargs
        )

        self.reset_parameters()

    dflt_Modules = CNP.dflt_Modules

    def encode_globally(self, X_cntxt, Y_cntxt):
        # one representation per context pair, size = [batch_size, n_cntxt, r_dim]
        return self.xy_encoder(X_cntxt, Y_cntxt)

    def attend(self, X_cntxt, R, X_trgt):
        """Return the deterministic representation of each target, size=[batch_size, n_trgt, r_dim]."""
        if X_cntxt.size(1) == 0:
            # nothing to attend to
            return X_trgt.new_zeros(*X_trgt.shape[:2], self.r_dim)

        return self.attender(X_cntxt, X_trgt, R)

    def trgt_dependent_representation(self, X_cntxt, _, R, X_trgt):
        return self.attend(X_cntxt, R, X_trgt).unsqueeze(0)


class AttnLNP(LatentNeuralProcessFamily, AttnCNP):
    """
    Attentive (latent) neural process [1]. The decoder gets both the attentive
    representation and a global latent inferred from the mean of the context encodings.

    Parameters
    ----------
    x_dim : int

    y_dim : int

    kwargs :
        Additional arguments to `AttnCNP` and `LatentNeuralProcessFamily`.

    References
    ----------
    [1] Kim, Hyunjik, et al. "Attentive neural processes." arXiv preprint
        arXiv:1901.05761 (2019).
    """

    _valid_paths = ["both"]

    def __init__(self, x_dim, y_dim, **kwargs):
        super().__init__(x_dim, y_dim, encoded_path="both", **kwargs)

    @property
    def dflt_Modules(self):
        Modules = AttnCNP.dflt_Modules.__get__(self)
        Modules.update(LatentNeuralProcessFamily.dflt_Modules.__get__(self))
        return Modules

    def rep_to_lat_input(self, R):
        batch_size, n_cntxt, _ = R.shape

        if n_cntxt == 0:
            return R.new_zeros(batch_size, 1, self.r_dim)

        # single global latent, size = [batch_size, 1, r_dim]
        return torch.mean(R, dim=1, keepdim=True)

    def trgt_dependent_representation(self, X_cntxt, z_samples, R, X_trgt):
        n_z_samples = z_samples.size(0)
        batch_size, n_trgt, _ = X_trgt.shape

        # size = [n_z_samples, batch_size, n_trgt, z_dim]
        z_samples = z_samples.expand(n_z_samples, batch_size, n_trgt, self.z_dim)

        # size = [n_z_samples, batch_size, n_trgt, r_dim]
        return self.merge_r_z(self.attend(X_cntxt, R, X_trgt), z_samples)
