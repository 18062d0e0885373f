from dataclasses import dataclass
import warnings
import numpy as np
from jaxpk.config import ExtrapolationMethod, _MAX_NUM_EXTRAPOLATION_
from jaxpk.errors import ConfigurationError, RangeError


@dataclass(frozen=True)
class WavenumberGrid:
    k: np.ndarray
    k_extra: np.ndarray

    @property
    def ln_k(self):
        return np.log(self.k)

    @property
    def ln_k_extra(self):
        return np.log(self.k_extra)

    @property
    def k_size(self):
        return self.k.size

    @property
    def k_size_extra(self):
        return self.k_extra.size

    @property
    def k_min(self):
        return self.k[0]

    @property
    def k_max(self):
        return self.k[-1]


@dataclass(frozen=True)
class TimeGrid:
    ln_tau: np.ndarray
    z: np.ndarray
    index_tau_perturbations: np.ndarray

    @property
    def ln_tau_size(self):
        return self.ln_tau.size


def build_k_grid(perturbations, extrapolation_method, precision, verbose=0):
    """
    Wavenumber sampling of the stored spectra.

    The native sampling of the perturbations is kept as is; a logarithmic
    tail reaching ``precision.k_max_extra`` is appended for the extended
    tables unless the extrapolation policy is ``ZERO``.
    """
    k = np.asarray(perturbations.k, dtype=np.float64)
    if k.ndim != 1 or k.size < 2:
        raise ConfigurationError('Perturbations must provide at least two wavenumbers.')
    if np.any(k <= 0) or np.any(np.diff(k) <= 0):
        raise ConfigurationError('Perturbation wavenumbers must be positive and strictly increasing.')

    k_max = k[-1]
    if extrapolation_method is ExtrapolationMethod.ZERO or precision.k_max_extra <= k_max:
        if precision.k_max_extra < k_max and extrapolation_method is not ExtrapolationMethod.ZERO:
            warnings.warn(f'k_max_extra={precision.k_max_extra} is below the perturbation k_max={k_max}; no high-k tail is added.')
        return WavenumberGrid(k=k, k_extra=k.copy())

    decades = np.log10(precision.k_max_extra / k_max)
    n_tail = int(np.ceil(decades * precision.k_per_decade_extra))
    if n_tail > _MAX_NUM_EXTRAPOLATION_:
        raise ConfigurationError(
            f'Extrapolating from k_max={k_max} to k_max_extra={precision.k_max_extra} needs {n_tail} points, '
            f'more than the allowed {_MAX_NUM_EXTRAPOLATION_}. Reduce k_max_extra or k_per_decade_extra.')
    ln_tail = np.log(k_max) + np.arange(1, n_tail + 1) * (np.log(precision.k_max_extra) - np.log(k_max)) / n_tail
    k_extra = np.concatenate((k, np.exp(ln_tail)))
    if verbose > 1:
        print(f'JAX-PK: extending k from {k_max:.4g} to {k_extra[-1]:.4g} 1/Mpc with {n_tail} points')
    return WavenumberGrid(k=k, k_extra=k_extra)


def build_tau_list(perturbations, background, z_max_pk):
    """
    Conformal times at which spectra are stored.

    All perturbation times later than tau(z_max_pk) are kept, plus the latest
    earlier one so that z_max_pk is bracketed. Only the final time is kept
    when z_max_pk is zero.
    """
    tau = np.asarray(perturbations.tau, dtype=np.float64)
    if tau.ndim != 1 or tau.size < 1 or np.any(tau <= 0) or np.any(np.diff(tau) <= 0):
        raise ConfigurationError('Perturbation conformal times must be positive and strictly increasing.')
    if z_max_pk < 0:
        raise RangeError(f'z_max_pk must be non-negative, got {z_max_pk}.')
    if z_max_pk > background.z_max:
        raise RangeError(f'z_max_pk={z_max_pk} exceeds the background range z_max={background.z_max}.')

    if z_max_pk == 0:
        index_tau = np.array([tau.size - 1])
    else:
        tau_min = float(background.tau_of_z(z_max_pk))
        if tau_min < tau[0] * (1. - 1e-10):
            raise RangeError(f'z_max_pk={z_max_pk} is earlier than the first perturbation time; '
                             f'the perturbations must be sampled up to at least z={float(background.z_of_tau(tau[0])):.4g}.')
        first = min(np.searchsorted(tau, tau_min * (1. - 1e-10)), tau.size - 1)
        # Keep one time before tau_min unless it coincides with a node
        if first > 0 and tau[first] > tau_min * (1. + 1e-10):
            first -= 1
        index_tau = np.arange(first, tau.size)

    tau_kept = tau[index_tau]
    return TimeGrid(ln_tau=np.log(tau_kept), z=np.asarray(background.z_of_tau(tau_kept), dtype=np.float64),
                    index_tau_perturbations=index_tau)
