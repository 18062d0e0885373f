"""
Collaborator interfaces consumed by :class:`jaxpk.JAXPK` and reference
implementations of them.

The engine only relies on the ``Background``, ``Perturbations`` and
``Primordial`` protocols. ``W0WaBackground``, ``EisensteinHuPerturbations``,
``TabulatedPerturbations`` and ``PowerLawPrimordial`` are lightweight
stand-ins for a Boltzmann code, good enough to drive the engine end to end.
All wavenumbers are in 1/Mpc, conformal times in Mpc.
"""

import numpy as np
from typing import Protocol
from scipy.integrate import quad, solve_ivp
from scipy.interpolate import CubicSpline
from jaxpk.errors import ConfigurationError, RangeError

_C_KM_S_ = 299792.458
_NEUTRINO_MASS_PER_OMEGA_H2_ = 93.14


class Background(Protocol):
    h: float
    Omega_m: float
    Omega_b: float
    Omega_r: float
    T_cmb: float
    f_nu: float
    m_ncdm_tot: float
    z_max: float

    def tau_of_z(self, z): ...
    def z_of_tau(self, tau): ...
    def hubble(self, z): ...
    def Omega_m_of_z(self, z): ...
    def Omega_de_of_z(self, z): ...
    def w_of_z(self, z): ...
    def growth_factor(self, z): ...


class Perturbations(Protocol):
    k: np.ndarray
    tau: np.ndarray
    ic_size: int
    has_cb: bool

    def delta(self, species, index_ic, index_tau): ...


class Primordial(Protocol):
    ic_size: int

    def ln_pk_ic(self, k, index_ic): ...
    def cross_coefficient(self, k, index_ic1, index_ic2): ...


class W0WaBackground:
    def __init__(self, h=0.67, Omega_m=0.31, Omega_b=0.049, T_cmb=2.7255, N_eff=3.046,
                 m_ncdm_tot=0., w0=-1., wa=0., z_max=100., n_table=512):
        """
        Flat background with a CPL dark energy equation of state w(a) = w0 + wa (1 - a).

        Parameters
        ----------
        h : float
            Dimensionless Hubble constant.
        Omega_m : float
            Total matter density today (CDM, baryons and massive neutrinos).
        Omega_b : float
            Baryon density today.
        T_cmb : float
            CMB temperature in K, sets the radiation density.
        N_eff : float
            Effective number of relativistic neutrino species.
        m_ncdm_tot : float
            Sum of neutrino masses in eV, counted as matter.
        w0, wa : float
            CPL dark energy parameters.
        z_max : float
            Largest redshift tabulated for conformal time and growth.
        n_table : int
            Number of nodes of the conformal-time and growth tables.
        """
        if not (0 < Omega_b < Omega_m < 1):
            raise ConfigurationError('Need 0 < Omega_b < Omega_m < 1.')
        if h <= 0 or z_max <= 0:
            raise ConfigurationError('h and z_max must be positive.')
        self.h = h
        self.Omega_m = Omega_m
        self.Omega_b = Omega_b
        self.T_cmb = T_cmb
        self.m_ncdm_tot = m_ncdm_tot
        self.w0 = w0
        self.wa = wa
        self.z_max = z_max

        Omega_g = 2.4728e-5 * (T_cmb / 2.7255)**4 / h**2
        self.Omega_r = Omega_g * (1. + 0.2271 * N_eff)
        self.Omega_de = 1. - Omega_m - self.Omega_r
        self.f_nu = m_ncdm_tot / _NEUTRINO_MASS_PER_OMEGA_H2_ / h**2 / Omega_m
        self.H0 = h * 100. / _C_KM_S_

        # Conformal time tau(a) = int_0^a da / (a^2 H)
        ln_a = np.linspace(np.log(1. / (1. + z_max)), 0., n_table)
        a = np.exp(ln_a)
        integrand = lambda x: 1. / (x * x * self._hubble_a(x))
        tau = np.empty(n_table)
        tau[0] = quad(integrand, 0., a[0], limit=200)[0]
        for i in range(1, n_table):
            tau[i] = tau[i - 1] + quad(integrand, a[i - 1], a[i])[0]
        self._ln_a_table = ln_a
        self._ln_tau_table = np.log(tau)
        self._ln_tau_of_ln_a = CubicSpline(ln_a, self._ln_tau_table)
        self._ln_a_of_ln_tau = CubicSpline(self._ln_tau_table, ln_a)
        self.tau0 = tau[-1]

        # Growth ODE in ln a, started deep in matter domination where D = a
        a_ini = min(1e-3, a[0])
        sol = solve_ivp(self._growth_rhs, (np.log(a_ini), 0.), [a_ini, a_ini],
                        t_eval=np.concatenate(([np.log(a_ini)], ln_a[ln_a > np.log(a_ini)])),
                        rtol=1e-8, atol=1e-12)
        if not sol.success:
            raise RuntimeError(f'Growth integration failed: {sol.message}')
        self.growth_today = sol.y[0, -1]
        self._ln_growth = CubicSpline(sol.t, np.log(sol.y[0] / self.growth_today))

    def _rho_de_ratio(self, a):
        return a**(-3. * (1. + self.w0 + self.wa)) * np.exp(-3. * self.wa * (1. - a))

    def _E2(self, a):
        return self.Omega_m / a**3 + self.Omega_r / a**4 + self.Omega_de * self._rho_de_ratio(a)

    def _hubble_a(self, a):
        return self.H0 * np.sqrt(self._E2(a))

    def _growth_rhs(self, ln_a, y):
        a = np.exp(ln_a)
        eps = 1e-4
        dlnH = (np.log(self._E2(a * (1. + eps))) - np.log(self._E2(a * (1. - eps)))) / (4. * eps)
        Om = self.Omega_m / a**3 / self._E2(a)
        return [y[1], -(2. + dlnH) * y[1] + 1.5 * Om * y[0]]

    def _check_z(self, z):
        z = np.asarray(z, dtype=np.float64)
        if np.any(z < -1e-10) or np.any(z > self.z_max * (1. + 1e-10)):
            raise RangeError(f'Redshift outside the tabulated background range [0, {self.z_max}].')
        return np.clip(z, 0., self.z_max)

    def tau_of_z(self, z):
        z = self._check_z(z)
        return np.exp(self._ln_tau_of_ln_a(-np.log1p(z)))

    def z_of_tau(self, tau):
        ln_tau = np.log(np.asarray(tau, dtype=np.float64))
        if np.any(ln_tau < self._ln_tau_table[0] - 1e-10) or np.any(ln_tau > self._ln_tau_table[-1] + 1e-10):
            raise RangeError('Conformal time outside the tabulated background range.')
        return np.maximum(np.exp(-self._ln_a_of_ln_tau(ln_tau)) - 1., 0.)

    def hubble(self, z):
        return self._hubble_a(1. / (1. + np.asarray(z, dtype=np.float64)))

    def Omega_m_of_z(self, z):
        a = 1. / (1. + np.asarray(z, dtype=np.float64))
        return self.Omega_m / a**3 / self._E2(a)

    def Omega_de_of_z(self, z):
        a = 1. / (1. + np.asarray(z, dtype=np.float64))
        return self.Omega_de * self._rho_de_ratio(a) / self._E2(a)

    def w_of_z(self, z):
        z = np.asarray(z, dtype=np.float64)
        return self.w0 + self.wa * z / (1. + z)

    def growth_factor(self, z):
        """Linear growth factor normalised to 1 at z = 0."""
        z = self._check_z(z)
        return np.exp(self._ln_growth(-np.log1p(z)))

    def conformal_distance(self, z1, z2):
        """Comoving distance between redshifts z1 < z2 in Mpc."""
        return quad(lambda z: 1. / self.hubble(z), z1, z2, limit=200)[0]


class PowerLawPrimordial:
    def __init__(self, A_s=2.1e-9, n_s=0.965, k_pivot=0.05, ic_amplitudes=None, ic_tilts=None,
                 correlations=None):
        """
        Power-law primordial spectra for one or several initial conditions.

        Parameters
        ----------
        A_s, n_s : float
            Amplitude and tilt of the first (adiabatic) initial condition.
        k_pivot : float
            Pivot scale in 1/Mpc.
        ic_amplitudes, ic_tilts : sequence of float, optional
            Amplitudes and tilts of every initial condition; override A_s and n_s.
        correlations : dict, optional
            Maps (ic1, ic2) with ic1 < ic2 to a constant cross-correlation
            coefficient in [-1, 1]. Missing pairs are uncorrelated.
        """
        self.amplitudes = np.atleast_1d(ic_amplitudes if ic_amplitudes is not None else [A_s]).astype(np.float64)
        self.tilts = np.atleast_1d(ic_tilts if ic_tilts is not None else [n_s] * len(self.amplitudes)).astype(np.float64)
        if len(self.tilts) != len(self.amplitudes):
            raise ConfigurationError('ic_amplitudes and ic_tilts must have the same length.')
        if np.any(self.amplitudes <= 0):
            raise ConfigurationError('Primordial amplitudes must be positive.')
        self.ic_size = len(self.amplitudes)
        self.k_pivot = k_pivot
        self.correlations = {}
        for (i, j), c in (correlations or {}).items():
            if abs(c) > 1:
                raise ConfigurationError(f'Cross-correlation coefficient {c} for ({i}, {j}) is outside [-1, 1].')
            self.correlations[(min(i, j), max(i, j))] = float(c)

    def ln_pk_ic(self, k, index_ic):
        k = np.asarray(k, dtype=np.float64)
        return np.log(self.amplitudes[index_ic]) + (self.tilts[index_ic] - 1.) * np.log(k / self.k_pivot)

    def cross_coefficient(self, k, index_ic1, index_ic2):
        k = np.asarray(k, dtype=np.float64)
        if index_ic1 == index_ic2:
            return np.ones_like(k)
        key = (min(index_ic1, index_ic2), max(index_ic1, index_ic2))
        return np.full_like(k, self.correlations.get(key, 0.))


class TabulatedPerturbations:
    def __init__(self, k, tau, delta_m, delta_cb=None):
        """
        Transfer functions given as arrays.

        Parameters
        ----------
        k : array_like
            Strictly increasing wavenumbers.
        tau : array_like
            Strictly increasing conformal times.
        delta_m, delta_cb : array_like
            Density transfer functions with shape (ic_size, len(tau), len(k)),
            or (len(tau), len(k)) for a single initial condition.
        """
        self.k = np.asarray(k, dtype=np.float64)
        self.tau = np.asarray(tau, dtype=np.float64)
        self._delta = {'m': self._as_table(delta_m)}
        if delta_cb is not None:
            self._delta['cb'] = self._as_table(delta_cb)
            if self._delta['cb'].shape != self._delta['m'].shape:
                raise ConfigurationError('delta_m and delta_cb must have the same shape.')
        self.has_cb = delta_cb is not None
        self.ic_size = self._delta['m'].shape[0]

    def _as_table(self, delta):
        delta = np.asarray(delta, dtype=np.float64)
        if delta.ndim == 2:
            delta = delta[None]
        if delta.shape[1:] != (self.tau.size, self.k.size):
            raise ConfigurationError(f'Transfer table shape {delta.shape} does not match (ic, {self.tau.size}, {self.k.size}).')
        return delta

    def delta(self, species, index_ic, index_tau):
        if species not in self._delta:
            raise ConfigurationError(f"No transfer functions for species '{species}'.")
        return self._delta[species][index_ic, index_tau]


class EisensteinHuPerturbations(TabulatedPerturbations):
    def __init__(self, background, k_min=1e-4, k_max=5., k_per_decade=40, z_list=None,
                 wiggle_amplitude=0.08, ic_ratios=None):
        """
        Matter transfer functions from the Eisenstein & Hu (1998) no-wiggle fit.

        A damped oscillation with the sound-horizon period is superimposed to
        mimic baryon acoustic oscillations, and massive neutrinos suppress the
        total-matter transfer function below their free-streaming length.

        Parameters
        ----------
        background : W0WaBackground
            Provides the growth factor and conformal times.
        k_min, k_max : float
            Range of the wavenumber sampling in 1/Mpc.
        k_per_decade : int
            Logarithmic sampling density.
        z_list : sequence of float, optional
            Redshifts at which transfer functions are tabulated. Defaults to
            40 values between background.z_max / 2 and 0.
        wiggle_amplitude : float
            Relative amplitude of the acoustic oscillations.
        ic_ratios : sequence of float, optional
            Transfer-function ratio of each initial condition relative to the
            first. Negative values anti-correlate the modes.
        """
        if not 0 < k_min < k_max:
            raise ConfigurationError('Need 0 < k_min < k_max.')
        n_k = int(np.ceil(np.log10(k_max / k_min) * k_per_decade)) + 1
        k = np.logspace(np.log10(k_min), np.log10(k_max), n_k)
        if z_list is None:
            z_list = np.expm1(np.linspace(np.log1p(0.5 * background.z_max), 0., 40))
        z_list = np.sort(np.asarray(z_list, dtype=np.float64))[::-1]
        tau = background.tau_of_z(z_list)
        ratios = np.atleast_1d(ic_ratios if ic_ratios is not None else [1.]).astype(np.float64)

        t_nw = eisenstein_hu_nowiggle_transfer(k, background.Omega_m, background.Omega_b, background.h, background.T_cmb)
        s = sound_horizon_fit(background.Omega_m, background.Omega_b, background.h)
        ks = k * s
        wiggles = 1. + wiggle_amplitude * np.sinc(ks / np.pi) * ks**2 / (1. + ks**2) * np.exp(-(k / 0.15)**1.4)
        transfer = t_nw * wiggles

        growth = background.growth_today * background.growth_factor(z_list)
        normalisation = 2. * k**2 / (5. * background.Omega_m * background.H0**2)
        delta_cb = growth[:, None] * (normalisation * transfer)[None, :]
        delta_cb = ratios[:, None, None] * delta_cb[None]

        has_cb = background.m_ncdm_tot > 0
        if has_cb:
            k_fs = 0.908 * background.h * np.sqrt(background.Omega_m) * background.m_ncdm_tot / np.sqrt(1. + z_list)
            f_nu = background.f_nu
            suppression = 1. - f_nu + f_nu / (1. + (k[None, :] / k_fs[:, None])**2)
            delta_m = delta_cb * suppression[None]
            super().__init__(k, tau, delta_m, delta_cb)
        else:
            super().__init__(k, tau, delta_cb)
        self.z = z_list


def sound_horizon_fit(Omega_m, Omega_b, h):
    """Approximate sound horizon at the drag epoch in Mpc (Eisenstein & Hu 1998, eq. 26)."""
    om0h2 = Omega_m * h**2
    ombh2 = Omega_b * h**2
    return 44.5 * np.log(9.83 / om0h2) / np.sqrt(1. + 10. * ombh2**0.75)


def eisenstein_hu_nowiggle_transfer(k, Omega_m, Omega_b, h, T_cmb=2.7255):
    """Zero-baryon-oscillation transfer function of Eisenstein & Hu (1998), k in 1/Mpc."""
    k = np.asarray(k, dtype=np.float64)
    ombom0 = Omega_b / Omega_m
    om0h2 = Omega_m * h**2
    theta2p7 = T_cmb / 2.7
    s = sound_horizon_fit(Omega_m, Omega_b, h)
    alpha_gamma = 1. - 0.328 * np.log(431. * om0h2) * ombom0 + 0.38 * np.log(22.3 * om0h2) * ombom0**2
    gamma = Omega_m * h * (alpha_gamma + (1. - alpha_gamma) / (1. + (0.43 * k * s)**4))
    q = k / h * theta2p7**2 / gamma
    C0 = 14.2 + 731. / (1. + 62.5 * q)
    L0 = np.log(2. * np.e + 1.8 * q)
    return L0 / (L0 + C0 * q**2)
