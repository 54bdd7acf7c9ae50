"""Base classes of the conditional and latent neural processes."""
import abc
from functools import partial

import torch
import torch.nn as nn

from convnps.architectures import MLP, merge_flat_input
from convnps.utils.helpers import MultivariateNormalDiag
from convnps.utils.initialization import weights_init

from .noise import get_noise_model

__all__ = [
    "NeuralProcessFamily",
    "LatentNeuralProcessFamily",
]


class NeuralProcessFamily(nn.Module, abc.ABC):
    """
    Base class of the neural processes, which map a context set and target inputs to a
    predictive distribution over the target outputs.

    A forward pass is split in three steps that subclasses implement:
    `encode_globally` (context set -> representation `R`), `trgt_dependent_representation`
    (`R`, target inputs and optional latent samples -> one representation per target)
    and `decode` (target representations -> predictive distribution).

    Notes
    -----
    Sizes are written as `size=[batch_size, n_cntxt, y_dim]`: the batch comes first, the
    channels last and the middle dimension indexes the points of the set.

    Parameters
    ----------
    x_dim : int
        Dimension of the inputs.

    y_dim : int
        Dimension of the outputs.

    encoded_path : {"deterministic", "latent", "both"}
        Representation given to the decoder. `"deterministic"`: a function of the context
        set. `"latent"`: a sample of the latent variable. `"both"`: the two merged.

    r_dim : int, optional
        Dimension of the representations.

    x_transf_dim : int, optional
        Dimension of the encoded inputs. `-1` uses `r_dim` and `None` keeps `x_dim`.

    XEncoder : nn.Module, optional
        Pointwise input encoder (unitialized), called as `XEncoder(x_dim, x_transf_dim)`.
        `None` uses an MLP.

    Decoder : nn.Module, optional
        Decoder (unitialized), called as `Decoder(x_transf_dim, r_dim, n_suffstat)` and
        mapping `(x_trgt, r_trgt)` to the statistics needed by the noise model. Use
        `merge_flat_input` for a decoder of `[x;r]`, or `discard_ith_arg(..., i=0)` for a
        decoder of `r` only. `None` uses an MLP.

    noise : {"het", "fixed", "amortised"} or callable, optional
        Observation noise model. See `get_noise_model`.

    noise_kwargs : dict, optional
        Additional arguments to `get_noise_model`.
    """

    _valid_paths = ["deterministic", "latent", "both"]

    def __init__(
        self,
        x_dim,
        y_dim,
        encoded_path,
        r_dim=128,
        x_transf_dim=-1,
        XEncoder=None,
        Decoder=None,
        noise="het",
        noise_kwargs={},
    ):
        super().__init__()

        self.encoded_path = encoded_path.lower()
        if self.encoded_path not in self._valid_paths:
            raise ValueError(
                f"Unknown encoded_path={self.encoded_path} for {type(self).__name__}, should be one of {self._valid_paths}."
            )

        self.x_dim = x_dim
        self.y_dim = y_dim
        self.r_dim = r_dim
        if x_transf_dim is None:
            self.x_transf_dim = x_dim
        elif x_transf_dim == -1:
            self.x_transf_dim = r_dim
        else:
            self.x_transf_dim = x_transf_dim

        Modules = self.dflt_Modules
        XEncoder = Modules["XEncoder"] if XEncoder is None else XEncoder
        Decoder = Modules["Decoder"] if Decoder is None else Decoder

        self.x_encoder = XEncoder(self.x_dim, self.x_transf_dim)
        self.noise_model = get_noise_model(noise, self.y_dim, **noise_kwargs)
        self.decoder = Decoder(self.x_transf_dim, self.r_dim, self.noise_model.n_suffstat)

        self.reset_parameters()

    def reset_parameters(self):
        weights_init(self)

    @property
    def dflt_Modules(self):
        """Default submodules, subclasses extend the returned dictionary."""
        SubDecoder = partial(MLP, n_hidden_layers=4, hidden_size=self.r_dim)
        return dict(
            XEncoder=partial(MLP, n_hidden_layers=1, hidden_size=self.r_dim),
            SubDecoder=SubDecoder,
            Decoder=merge_flat_input(SubDecoder, is_sum_merge=True),
        )

    def forward(self, X_cntxt, Y_cntxt, X_trgt, Y_trgt=None):
        """
        Predict the target outputs given the context set and the target inputs.

        Parameters
        ----------
        X_cntxt : torch.Tensor, size=[batch_size, n_cntxt, x_dim]

        Y_cntxt : torch.Tensor, size=[batch_size, n_cntxt, y_dim]

        X_trgt : torch.Tensor, size=[batch_size, n_trgt, x_dim]

        Y_trgt : torch.Tensor, size=[batch_size, n_trgt, y_dim], optional
            Target outputs, only used to infer the latent proposal `q(z|C,T)`.

        Return
        ------
        p_yCc : torch.distributions.Distribution, batch shape=[n_z_samples, batch_size, n_trgt] ; event shape=[y_dim]
            Predictive distribution of the target outputs, one per latent sample.

        z_samples : torch.Tensor, size=[n_z_samples, batch_size, *n_lat, z_dim]
            Latent samples. `None` for deterministic models.

        q_zCc : torch.distributions.Distribution
            Latent distribution inferred from the context `q(z|C)`. `None` for
            deterministic models.

        q_zCct : torch.distributions.Distribution
            Latent distribution inferred from the context and targets `q(z|C,T)`. `None`
            unless the model is latent, uses `is_q_zCct` and `Y_trgt` is given.
        """
        X_cntxt = self.x_encoder(X_cntxt)
        X_trgt = self.x_encoder(X_trgt)

        # size = [batch_size, n_rep, r_dim]
        R = self.encode_globally(X_cntxt, Y_cntxt)

        z_samples, q_zCc, q_zCct = None, None, None
        if self.encoded_path != "deterministic":
            z_samples, q_zCc, q_zCct = self.latent_path(
                X_cntxt, Y_cntxt, R, X_trgt, Y_trgt
            )

        if self.encoded_path == "latent":
            # the decoder only sees the latent
            R = None

        # size = [n_z_samples, batch_size, n_trgt, y_dim]
        p_y_loc, p_y_scale = self.decode_samples(X_cntxt, z_samples, R, X_trgt)

        return MultivariateNormalDiag(p_y_loc, p_y_scale), z_samples, q_zCc, q_zCct

    @abc.abstractmethod
    def encode_globally(self, X_cntxt, Y_cntxt):
        """Encode the context set into `R`, size=[batch_size, n_rep, r_dim].

        `X_cntxt` are already encoded by `x_encoder`.
        """

    @abc.abstractmethod
    def trgt_dependent_representation(self, X_cntxt, z_samples, R, X_trgt):
        """Return one representation per target, size=[n_z_samples, batch_size, n_trgt, r_dim].

        `z_samples` is `None` for deterministic models and `R` is `None` when the
        decoder only depends on the latent.
        """

    def latent_path(self, X_cntxt, Y_cntxt, R, X_trgt, Y_trgt):
        """Return `z_samples, q_zCc, q_zCct`, see `forward`."""
        raise NotImplementedError(
            f"{type(self).__name__} has no latent path, cannot use encoded_path={self.encoded_path}."
        )

    def decode_samples(self, X_cntxt, z_samples, R, X_trgt):
        """Return the location and scale of the predictions, size=[n_z_samples, batch_size, n_trgt, y_dim]."""
        R_trgt = self.trgt_dependent_representation(X_cntxt, z_samples, R, X_trgt)
        return self.decode(X_trgt, R_trgt)

    def decode(self, X_trgt, R_trgt):
        """
        Decode the target representations into the location and scale of the predictions.

        Parameters
        ----------
        X_trgt : torch.Tensor, size=[batch_size, n_trgt, x_transf_dim]

        R_trgt : torch.Tensor, size=[n_z_samples, batch_size, n_trgt, r_dim]

        Return
        ------
        p_y_loc, p_y_scale : torch.Tensor, size=[n_z_samples, batch_size, n_trgt, y_dim]
        """
        # size = [n_z_samples, batch_size, n_trgt, n_suffstat]
        p_y_suffstat = self.decoder(X_trgt, R_trgt)
        return self.noise_model(p_y_suffstat)


class LatentNeuralProcessFamily(NeuralProcessFamily):
    """Base class of the neural processes with a global (or local) latent variable.

    Parameters
    ----------
    *args :
        Positional arguments to `NeuralProcessFamily`.

    encoded_path : {"latent", "both"}
        See `NeuralProcessFamily`.

    is_q_zCct : bool, optional
        Whether to sample the latents from the proposal `q(z|C,T)` when the target outputs
        are given, instead of `q(z|C)`. The loss then has to correct for it, by importance
        weighting or with an ELBO.

    is_cntxt_in_trgt : bool, optional
        Whether the targets already contain the context, in which case `q(z|C,T)` only
        encodes the targets. Else it encodes the union of both sets.

    n_z_samples_train : int, optional
        Number of latent samples in training mode.

    n_z_samples_test : int, optional
        Number of latent samples in evaluation mode.

    n_z_samples_batch : int, optional
        Maximum number of samples that are decoded at once.

    LatentEncoder : nn.Module, optional
        Encoder (unitialized) from representations to the latent location and scale,
        called as `LatentEncoder(r_dim, 2 * z_dim)`. `None` uses an MLP.

    z_dim : int, optional
        Dimension of the latent. `None` uses `r_dim`.

    min_z_scale : float, optional
        Smallest standard deviation of the latent, which is in `[min_z_scale, 1]`.

    **kwargs :
        Additional arguments to `NeuralProcessFamily`.
    """

    _valid_paths = ["latent", "both"]

    def __init__(
        self,
        *args,
        is_q_zCct=False,
        is_cntxt_in_trgt=False,
        n_z_samples_train=32,
        n_z_samples_test=32,
        n_z_samples_batch=1024,
        LatentEncoder=None,
        z_dim=None,
        min_z_scale=0.1,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)

        self.is_q_zCct = is_q_zCct
        self.is_cntxt_in_trgt = is_cntxt_in_trgt
        self.n_z_samples_train = n_z_samples_train
        self.n_z_samples_test = n_z_samples_test
        self.n_z_samples_batch = n_z_samples_batch
        self.z_dim = self.r_dim if z_dim is None else z_dim
        self.min_z_scale = min_z_scale

        if LatentEncoder is None:
            LatentEncoder = self.dflt_Modules["LatentEncoder"]
        self.latent_encoder = LatentEncoder(self.r_dim, 2 * self.z_dim)

        if self.encoded_path == "both":
            self.r_z_merger = nn.Linear(self.r_dim + self.z_dim, self.r_dim)
        elif self.z_dim != self.r_dim:
            # decoders expect inputs of size r_dim
            self.reshaper_z = nn.Linear(self.z_dim, self.r_dim)

        self.reset_parameters()

    @property
    def dflt_Modules(self):
        Modules = NeuralProcessFamily.dflt_Modules.__get__(self)
        Modules["LatentEncoder"] = partial(MLP, n_hidden_layers=1, hidden_size=self.r_dim)
        return Modules

    @property
    def n_z_samples(self):
        return self.n_z_samples_train if self.training else self.n_z_samples_test

    def latent_path(self, X_cntxt, Y_cntxt, R, X_trgt, Y_trgt):
        # batch shape = [batch_size, *n_lat] ; event shape = [z_dim]
        q_zCc = self.infer_latent_dist(X_cntxt, R)
        q_zCct = None

        if self.is_q_zCct and Y_trgt is not None:
            if self.is_cntxt_in_trgt:
                X_all, Y_all = X_trgt, Y_trgt
            else:
                X_all = torch.cat([X_cntxt, X_trgt], dim=1)
                Y_all = torch.cat([Y_cntxt, Y_trgt], dim=1)
            q_zCct = self.infer_latent_dist(X_all, self.encode_globally(X_all, Y_all))

        # size = [n_z_samples, batch_size, *n_lat, z_dim]
        sampling_dist = q_zCc if q_zCct is None else q_zCct
        z_samples = sampling_dist.rsample([self.n_z_samples])

        return z_samples, q_zCc, q_zCct

    def infer_latent_dist(self, X, R):
        """Return the latent distribution given a set's (encoded) inputs `X` and representation `R`.

        The batch shape is `[batch_size, n_lat]` and the event shape `[z_dim]`.
        """
        q_z_suffstat = self.latent_encoder(self.rep_to_lat_input(R))
        return self.to_latent_dist(*q_z_suffstat.split(self.z_dim, dim=-1))

    def to_latent_dist(self, q_z_loc, q_z_scale):
        """Gaussian latent whose standard deviations are squashed to `[min_z_scale, 1]`."""
        q_z_scale = self.min_z_scale + (1 - self.min_z_scale) * torch.sigmoid(q_z_scale)
        return MultivariateNormalDiag(q_z_loc, q_z_scale)

    def rep_to_lat_input(self, R):
        """Map the `n_rep` representations to the `n_lat` inputs of the latent encoder."""
        return R

    def decode_samples(self, X_cntxt, z_samples, R, X_trgt):
        decoded = [
            super(LatentNeuralProcessFamily, self).decode_samples(X_cntxt, z, R, X_trgt)
            for z in z_samples.split(self.n_z_samples_batch, dim=0)
        ]
        p_y_locs, p_y_scales = zip(*decoded)
        return torch.cat(p_y_locs, dim=0), torch.cat(p_y_scales, dim=0)

    def merge_r_z(self, R, z_samples):
        """
        Merge a deterministic representation with the latent samples.

        Parameters
        ----------
        R : torch.Tensor, size=[batch_size, *, r_dim]

        z_samples : torch.Tensor, size=[n_z_samples, batch_size, *, z_dim]

        Return
        ------
        out : torch.Tensor, size=[n_z_samples, batch_size, *, r_dim]
        """
        R = R.unsqueeze(0).expand(*z_samples.shape[:-1], self.r_dim)
        # ReLU such that the merger and the decoder are not two linear layers in a row
        return torch.relu(self.r_z_merger(torch.cat([R, z_samples], dim=-1)))
