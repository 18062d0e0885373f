"""
HMcode nonlinear correction.

Halo-model power spectrum with the fitted modifications of Mead et al.
(2015, 2016): Sheth-Tormen mass function, Bullock et al. concentrations with
amplitude ``c_min``, halo bloating ``eta = eta_0 - 0.3 sigma_8(z)``, damping
of the two-halo term and of the one-halo term on large scales, and a
smoothed transition between the two. The (c_min, eta_0) pair encodes the
baryonic feedback model.
"""

import numpy as np
from scipy.special import sici
from scipy.integrate import trapezoid
from jax import numpy as jnp
from jaxpk.jax_utils import sigma2_tophat_array, sigma_v_core
from jaxpk.nonlinear_base import NonlinearResult
from jaxpk.errors import NumericalError

_RHO_CRIT_OVER_H2_ = 2.7754e11  # Msun / Mpc^3

_ST_A_ = 0.2162
_ST_a_ = 0.707
_ST_p_ = 0.3
_F_FORMATION_ = 0.01


def nfw_window(k, r_s, c):
    """Normalised Fourier transform of a truncated NFW profile, broadcast over k and halo."""
    ks = k * r_s
    si1, ci1 = sici(ks)
    si2, ci2 = sici((1. + c) * ks)
    norm = np.log(1. + c) - c / (1. + c)
    return (np.sin(ks) * (si2 - si1) + np.cos(ks) * (ci2 - ci1) - np.sin(c * ks) / ((1. + c) * ks)) / norm


def sheth_tormen(nu):
    return _ST_A_ * (1. + (_ST_a_ * nu**2)**-_ST_p_) * np.exp(-_ST_a_ * nu**2 / 2.)


class HMcode:
    name = 'HMcode'

    def __init__(self, background, precision, c_min, eta_0, dewiggle=False):
        self.c_min = c_min
        self.eta_0 = eta_0
        self.dewiggle = dewiggle
        self.rho_m = background.Omega_m * _RHO_CRIT_OVER_H2_ * background.h**2
        self.mass = np.logspace(precision.hmcode_log10_mass_min, precision.hmcode_log10_mass_max,
                                precision.hmcode_mass_points)
        self.R_lagrangian = (3. * self.mass / (4. * np.pi * self.rho_m))**(1. / 3.)
        self.R_formation = self.R_lagrangian * _F_FORMATION_**(1. / 3.)

        # Growth history used to invert D(z_f) for halo formation redshifts
        self._z_table = np.linspace(0., background.z_max, 512)
        self._growth_table = np.asarray(background.growth_factor(self._z_table))
        self.h = background.h

    def _formation_redshift(self, growth_target, z):
        # Growth decreases with z: interpolate on the reversed table, clamp at z_max
        z_f = np.interp(growth_target, self._growth_table[::-1], self._z_table[::-1])
        return np.maximum(z_f, z)

    def correction(self, state):
        lnk = jnp.asarray(np.log(state.k_extra))
        pk = jnp.asarray(state.pk_l_extra)
        k = state.k_extra

        sigma = np.sqrt(np.asarray(sigma2_tophat_array(jnp.asarray(self.R_lagrangian), lnk, pk)))
        sigma_f = np.sqrt(np.asarray(sigma2_tophat_array(jnp.asarray(self.R_formation), lnk, pk)))
        sigma8 = float(np.sqrt(sigma2_tophat_array(jnp.asarray([8. / self.h]), lnk, pk)[0]))
        sigma_v = float(sigma_v_core(lnk, pk))

        delta_c = (1.59 + 0.0314 * np.log(sigma8)) * (1. + 0.0123 * np.log10(state.Omega_m)) * (1. + 0.262 * state.f_nu)
        Delta_v = 418. * state.Omega_m**-0.352 * (1. + 0.916 * state.f_nu)

        if sigma[0] < delta_c:
            return None
        if sigma[-1] > 1.:
            raise NumericalError(
                f'HMcode: sigma(M) > 1 at the largest mass M=10^{np.log10(self.mass[-1]):.3g} Msun for z={state.z:.4g}; '
                'the nonlinear scale lies outside the halo mass table, raise hmcode_log10_mass_max.')

        # sigma(R) decreases with R; interpolate ln R against -ln sigma
        ln_R = np.log(self.R_lagrangian)
        ln_sigma = np.log(sigma)
        R_nu1 = np.exp(np.interp(-np.log(delta_c), -ln_sigma, ln_R))
        R_nl = np.exp(np.interp(0., -ln_sigma, ln_R))
        dln_sigma2 = np.gradient(2. * ln_sigma, ln_R)
        n_eff = -3. - np.interp(np.log(R_nu1), ln_R, dln_sigma2)

        f_damp = 0.188 * sigma8**4.29
        k_star = 0.584 / sigma_v
        eta = self.eta_0 - 0.3 * sigma8
        alpha = np.clip(3.24 * 1.85**n_eff, 0.5, 2.)

        nu = delta_c / sigma
        z_f = self._formation_redshift(state.growth * delta_c / sigma_f, state.z)
        concentration = self.c_min * (1. + z_f) / (1. + state.z)
        r_virial = (3. * self.mass / (4. * np.pi * self.rho_m * Delta_v))**(1. / 3.)
        r_s = r_virial / concentration

        window = nfw_window(k[:, None] * nu[None, :]**eta, r_s[None, :], concentration[None, :])
        integrand = sheth_tormen(nu)[None, :] * self.mass[None, :] / self.rho_m * window**2
        pk_1h = trapezoid(integrand, nu, axis=1)
        delta2_1h = k**3 * pk_1h / (2. * np.pi**2) * (1. - np.exp(-(k / k_star)**2))

        pk_l = state.pk_l_extra
        if self.dewiggle and state.pk_nw_extra is not None:
            pk_2h_base = state.pk_nw_extra + (pk_l - state.pk_nw_extra) * np.exp(-(k * sigma_v)**2)
        else:
            pk_2h_base = pk_l
        delta2_l = k**3 * pk_l / (2. * np.pi**2)
        delta2_2h = (1. - f_damp * np.tanh(k * sigma_v / np.sqrt(f_damp))**2) * k**3 * pk_2h_base / (2. * np.pi**2)

        delta2_nl = (delta2_2h**alpha + delta2_1h**alpha)**(1. / alpha)
        corr = np.sqrt(delta2_nl / delta2_l)[:state.k.size]
        return NonlinearResult(nl_corr_density=corr, k_nl=1. / R_nl)
