"""
Halofit nonlinear correction.

Takahashi et al. (2012) revision of the Smith et al. (2003) fitting formula,
with the Bird, Viel & Haehnelt (2012) massive-neutrino terms.
"""

import numpy as np
from scipy.optimize import brentq
from jax import numpy as jnp
from jaxpk.jax_utils import gaussian_sigma_integrals, halofit_core
from jaxpk.config import _M_EV_TOO_BIG_FOR_HALOFIT_
from jaxpk.nonlinear_base import NonlinearResult
from jaxpk.errors import ConfigurationError, NumericalError


class Halofit:
    name = 'Halofit'

    def __init__(self, background, precision):
        if background.m_ncdm_tot > _M_EV_TOO_BIG_FOR_HALOFIT_:
            raise ConfigurationError(
                f'Halofit is not calibrated for a total neutrino mass of {background.m_ncdm_tot} eV '
                f'(maximum {_M_EV_TOO_BIG_FOR_HALOFIT_} eV).')
        self.precision = precision

    def _sigma(self, ln_R, lnk, pk):
        sum1, _, _ = gaussian_sigma_integrals(np.exp(ln_R), lnk, pk)
        return float(jnp.sqrt(sum1))

    def correction(self, state):
        precision = self.precision
        k_max = state.k_extra[-1]
        if k_max < precision.halofit_min_k_max:
            raise ConfigurationError(
                f'Halofit needs the spectrum up to k={precision.halofit_min_k_max} 1/Mpc, it stops at {k_max:.4g}. '
                'Raise k_max_extra or use an extrapolation method other than zero.')
        lnk = jnp.asarray(np.log(state.k_extra))
        pk = jnp.asarray(state.pk_l_extra)

        ln_R_min = np.log(np.sqrt(-np.log(precision.halofit_sigma_precision)) / k_max)
        ln_R_max = np.log(1. / precision.halofit_min_k_nonlinear)
        if self._sigma(ln_R_min, lnk, pk) < 1.:
            return None
        if self._sigma(ln_R_max, lnk, pk) > 1.:
            raise NumericalError(
                f'Halofit: sigma(R) > 1 at R={np.exp(ln_R_max):.4g} Mpc for z={state.z:.4g}; '
                'the nonlinear scale is larger than 1/halofit_min_k_nonlinear.')
        try:
            ln_R_nl = brentq(lambda x: self._sigma(x, lnk, pk) - 1., ln_R_min, ln_R_max,
                             xtol=precision.halofit_tol_sigma, maxiter=200)
        except RuntimeError as e:
            raise NumericalError(f'Halofit: search for sigma(R)=1 did not converge at z={state.z:.4g}.') from e

        R_nl = np.exp(ln_R_nl)
        sum1, sum2, sum3 = gaussian_sigma_integrals(R_nl, lnk, pk)
        d1 = -sum2 / sum1
        d2 = -sum2**2 / sum1**2 - sum3 / sum1
        n_eff = -3. - d1
        C = -d2

        pk_nl = halofit_core(jnp.asarray(state.k), jnp.asarray(state.pk_l), 1. / R_nl, n_eff, C,
                             state.Omega_m, state.Omega_de, state.w, state.f_nu, state.h,
                             precision.halofit_min_k_nonlinear)
        return NonlinearResult(nl_corr_density=np.sqrt(np.asarray(pk_nl) / state.pk_l), k_nl=1. / R_nl)
