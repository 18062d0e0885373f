from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable
from jaxpk.errors import ConfigurationError

_MAX_NUM_EXTRAPOLATION_ = 100000
_M_EV_TOO_BIG_FOR_HALOFIT_ = 10.


class NonlinearMethod(Enum):
    NONE = 'none'
    HALOFIT = 'halofit'
    HMCODE = 'hmcode'


class ExtrapolationMethod(Enum):
    ZERO = 'zero'
    ONLY_MAX = 'only_max'
    ONLY_MAX_UNITS = 'only_max_units'
    MAX_SCALED = 'max_scaled'
    HMCODE = 'hmcode'
    USER_DEFINED = 'user_defined'


class FeedbackModel(Enum):
    EMU_DMONLY = 'emu_dmonly'
    OWLS_DMONLY = 'owls_dmonly'
    OWLS_REF = 'owls_ref'
    OWLS_AGN = 'owls_agn'
    OWLS_DBLIM = 'owls_dblim'
    USER_DEFINED = 'user_defined'


class PkOutput(Enum):
    LINEAR = 'linear'
    NONLINEAR = 'nonlinear'
    NUMERICAL_NOWIGGLE = 'numerical_nowiggle'
    ANALYTIC_NOWIGGLE = 'analytic_nowiggle'


class SigmaOutput(Enum):
    SIGMA = 'sigma'
    SIGMA_PRIME = 'sigma_prime'
    SIGMA_DISP = 'sigma_disp'


# (c_min, eta_0) of the HMcode halo concentration and bloating
FEEDBACK_PRESETS = {
    FeedbackModel.EMU_DMONLY: (3.13, 0.603),
    FeedbackModel.OWLS_DMONLY: (3.43, 0.64),
    FeedbackModel.OWLS_REF: (3.03, 0.68),
    FeedbackModel.OWLS_AGN: (2.32, 0.76),
    FeedbackModel.OWLS_DBLIM: (3.91, 0.51),
}


def as_enum(enum_cls, value, name):
    """Coerce ``value`` (member or its string value) to ``enum_cls``."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.lower())
        except ValueError:
            pass
    valid = [m.value for m in enum_cls]
    raise ConfigurationError(f"Invalid {name} '{value}'. Must be one of: {valid}")


@dataclass(frozen=True)
class PrecisionConfig:
    """Numerical precision parameters of the Fourier engine.

    Wavenumbers are in 1/Mpc and radii in Mpc.
    """
    k_max_extra: float = 100.
    k_per_decade_extra: float = 20.
    sigma_k_per_decade: float = 80.
    sigma_max_points: int = 50000
    sigma_tol_integrand: float = 1e-3
    halofit_min_k_nonlinear: float = 1e-3
    halofit_sigma_precision: float = 0.05
    halofit_tol_sigma: float = 1e-6
    halofit_min_k_max: float = 5.
    hmcode_mass_points: int = 200
    hmcode_log10_mass_min: float = 9.
    hmcode_log10_mass_max: float = 17.
    nk_wiggle: int = 5000
    nowiggle_savgol_width: float = 1.2
    nowiggle_savgol_order: int = 3
    nowiggle_k_norm: float = 1e-3
    tilt_dlnk: float = 1e-2

    def __post_init__(self):
        if self.k_per_decade_extra <= 0 or self.sigma_k_per_decade <= 0:
            raise ConfigurationError("Points per decade must be positive.")
        if self.nk_wiggle < 2 * self.nowiggle_savgol_order + 3:
            raise ConfigurationError(f"nk_wiggle={self.nk_wiggle} is too small for a filter of order {self.nowiggle_savgol_order}.")
        if self.hmcode_log10_mass_max <= self.hmcode_log10_mass_min:
            raise ConfigurationError("hmcode_log10_mass_max must be greater than hmcode_log10_mass_min.")
        if self.tilt_dlnk <= 0:
            raise ConfigurationError("tilt_dlnk must be positive.")


@dataclass(frozen=True)
class FourierSettings:
    method: NonlinearMethod = NonlinearMethod.NONE
    extrapolation_method: ExtrapolationMethod = ExtrapolationMethod.MAX_SCALED
    user_extrapolation: Optional[Callable] = None
    has_pk_m: bool = True
    has_pk_cb: bool = False
    z_max_pk: float = 0.
    has_pk_eq: bool = False
    has_pk_analytic_nowiggle: bool = False
    has_pk_numerical_nowiggle: bool = False
    feedback: FeedbackModel = FeedbackModel.EMU_DMONLY
    c_min: float = 3.13
    eta_0: float = 0.603
    z_infinity: float = 10.
    hmcode_dewiggle: bool = False
    verbose: int = 0


class FourierConfig:
    """Mutable builder for :class:`FourierSettings`.

    Set attributes, then call :meth:`build_and_validate` to obtain the
    immutable settings consumed by :class:`jaxpk.JAXPK`.
    """

    def __init__(self):
        # Outputs
        self.has_pk_m = True
        self.has_pk_cb = False
        self.z_max_pk = 0.
        self.has_pk_analytic_nowiggle = False
        self.has_pk_numerical_nowiggle = False

        # Nonlinear corrections
        self.method = 'none'
        self.has_pk_eq = False
        self.z_infinity = 10.
        self.feedback = 'emu_dmonly'
        self.c_min = None
        self.eta_0 = None
        self.hmcode_dewiggle = False

        # High-k extrapolation
        self.extrapolation_method = 'max_scaled'
        self.user_extrapolation = None

        self.verbose = 0

    def build_and_validate(self):
        method = as_enum(NonlinearMethod, self.method, 'nonlinear method')
        extrapolation = as_enum(ExtrapolationMethod, self.extrapolation_method, 'extrapolation method')
        feedback = as_enum(FeedbackModel, self.feedback, 'feedback model')

        if not (self.has_pk_m or self.has_pk_cb):
            raise ConfigurationError("At least one of has_pk_m or has_pk_cb must be requested.")
        if self.z_max_pk < 0:
            raise ConfigurationError(f"z_max_pk must be non-negative, got {self.z_max_pk}.")
        if extrapolation is ExtrapolationMethod.USER_DEFINED:
            if not callable(self.user_extrapolation):
                raise ConfigurationError("user_defined extrapolation requires a callable user_extrapolation(k, k_max, delta_max).")
        elif self.user_extrapolation is not None:
            raise ConfigurationError("user_extrapolation is only used with the user_defined extrapolation method.")
        if self.has_pk_eq and method is NonlinearMethod.NONE:
            raise ConfigurationError("has_pk_eq requires a nonlinear method.")
        if self.has_pk_eq and self.z_infinity <= self.z_max_pk:
            raise ConfigurationError(f"z_infinity={self.z_infinity} must exceed z_max_pk={self.z_max_pk}.")
        if self.hmcode_dewiggle and not self.has_pk_numerical_nowiggle:
            raise ConfigurationError("hmcode_dewiggle requires has_pk_numerical_nowiggle.")

        if feedback is FeedbackModel.USER_DEFINED:
            if self.c_min is None or self.eta_0 is None:
                raise ConfigurationError("user_defined feedback requires both c_min and eta_0.")
            c_min, eta_0 = self.c_min, self.eta_0
        else:
            c_min, eta_0 = FEEDBACK_PRESETS[feedback]
            if self.c_min is not None or self.eta_0 is not None:
                print('*** Warning ***')
                print(f'c_min and eta_0 are set by the {feedback.value} feedback model; the values given are ignored.')

        return FourierSettings(
            method=method,
            extrapolation_method=extrapolation,
            user_extrapolation=self.user_extrapolation,
            has_pk_m=bool(self.has_pk_m),
            has_pk_cb=bool(self.has_pk_cb),
            z_max_pk=float(self.z_max_pk),
            has_pk_eq=bool(self.has_pk_eq),
            has_pk_analytic_nowiggle=bool(self.has_pk_analytic_nowiggle or self.has_pk_numerical_nowiggle),
            has_pk_numerical_nowiggle=bool(self.has_pk_numerical_nowiggle),
            feedback=feedback,
            c_min=float(c_min),
            eta_0=float(eta_0),
            z_infinity=float(self.z_infinity),
            hmcode_dewiggle=bool(self.hmcode_dewiggle),
            verbose=int(self.verbose),
        )

    def __repr__(self):
        return (f"FourierConfig(method={self.method},\nextrapolation_method={self.extrapolation_method},\n"
                f"has_pk_m={self.has_pk_m},\nhas_pk_cb={self.has_pk_cb},\nz_max_pk={self.z_max_pk},\n"
                f"has_pk_eq={self.has_pk_eq},\nfeedback={self.feedback},\nverbose={self.verbose})")

    def __str__(self):
        return self.__repr__()
