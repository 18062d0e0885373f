from dataclasses import dataclass, replace
import numpy as np
from scipy.integrate import quad
from scipy.optimize import brentq
from jaxpk.config import NonlinearMethod
from jaxpk.nonlinear_base import NonlinearState, NoCorrection
from jaxpk.halofit import Halofit
from jaxpk.hmcode import HMcode
from jaxpk.jax_utils import natural_spline_dd, interpolate_table
from jaxpk.errors import NumericalError

index_pk_eq_w = 0
index_pk_eq_Omega_m = 1


@dataclass
class NonlinearTable:
    index_pk: int
    nl_corr_density: np.ndarray
    k_nl: np.ndarray
    index_tau_min_nl: int

    @property
    def ln_tau_size_nl(self):
        return self.k_nl.size - self.index_tau_min_nl


@dataclass
class PkEqTable:
    """
    Effective constant-w models reproducing the distance to z_infinity.

    For every stored time, ``w_and_omega[index_tau, index_pk_eq_w]`` is the
    constant equation of state of a flat model with the same Omega_m and h
    whose conformal distance between z(tau) and z_infinity matches the true
    background, and ``w_and_omega[index_tau, index_pk_eq_Omega_m]`` is
    Omega_m(z) in that model.
    """
    ln_tau: np.ndarray
    w_and_omega: np.ndarray
    dd_w_and_omega: np.ndarray

    def at(self, ln_tau):
        values = interpolate_table(self.ln_tau, self.w_and_omega, self.dd_w_and_omega, ln_tau)
        return float(values[index_pk_eq_w]), float(values[index_pk_eq_Omega_m])


def _constant_w_E2(z, w, Omega_m, Omega_r):
    return Omega_m * (1. + z)**3 + Omega_r * (1. + z)**4 + (1. - Omega_m - Omega_r) * (1. + z)**(3. * (1. + w))


def build_pk_eq(background, ln_tau, z, z_infinity, w_bounds=(-3., 0.)):
    H0 = float(background.hubble(0.))
    Omega_m, Omega_r = background.Omega_m, background.Omega_r
    w_and_omega = np.empty((z.size, 2))
    for index_tau, z_i in enumerate(z):
        target = quad(lambda x: 1. / float(background.hubble(x)), z_i, z_infinity, limit=200)[0]

        def mismatch(w):
            distance = quad(lambda x: 1. / (H0 * np.sqrt(_constant_w_E2(x, w, Omega_m, Omega_r))),
                            z_i, z_infinity, limit=200)[0]
            return distance - target

        low, high = mismatch(w_bounds[0]), mismatch(w_bounds[1])
        if low * high > 0:
            raise NumericalError(f'pk_eq: no constant w in {w_bounds} reproduces the distance from z={z_i:.4g} '
                                 f'to z_infinity={z_infinity}.')
        w_eq = brentq(mismatch, *w_bounds, xtol=1e-10)
        w_and_omega[index_tau, index_pk_eq_w] = w_eq
        w_and_omega[index_tau, index_pk_eq_Omega_m] = Omega_m * (1. + z_i)**3 / _constant_w_E2(z_i, w_eq, Omega_m, Omega_r)
    return PkEqTable(ln_tau=ln_tau, w_and_omega=w_and_omega, dd_w_and_omega=natural_spline_dd(ln_tau, w_and_omega))


class PkEqAdapter:
    """Replaces (w, Omega_m, Omega_de) in a nonlinear state by their pk_eq equivalents."""

    def __init__(self, table, background):
        self.table = table
        self.Omega_r = background.Omega_r

    def adapt(self, state, ln_tau):
        w_eq, Omega_m_eq = self.table.at(ln_tau)
        Omega_r_z = self.Omega_r * (1. + state.z)**4 * Omega_m_eq / (state.Omega_m0 * (1. + state.z)**3)
        return replace(state, w=w_eq, Omega_m=Omega_m_eq, Omega_de=1. - Omega_m_eq - Omega_r_z)


def make_strategy(settings, background, precision):
    if settings.method is NonlinearMethod.HALOFIT:
        return Halofit(background, precision)
    if settings.method is NonlinearMethod.HMCODE:
        return HMcode(background, precision, settings.c_min, settings.eta_0, dewiggle=settings.hmcode_dewiggle)
    return NoCorrection()


class NonlinearDispatcher:
    def __init__(self, strategy, background, pk_eq=None, verbose=0):
        """
        Apply a nonlinear strategy to every stored time of a linear table.

        Parameters
        ----------
        strategy : object
            Has ``name`` and ``correction(state)``, returning a NonlinearResult
            or None when the spectrum is linear at that time.
        background : Background
            Source of Omega_m(z), Omega_de(z), w(z) and the growth factor.
        pk_eq : PkEqAdapter, optional
            Applied to the state before each strategy call.
        verbose : int
            Progress messages are printed when > 1.
        """
        self.strategy = strategy
        self.background = background
        self.pk_eq = pk_eq
        self.verbose = verbose

    def state(self, table, k_grid, tau_grid, index_tau, ln_nowiggle_ratio=None):
        z = float(tau_grid.z[index_tau])
        background = self.background
        pk_l_extra = np.exp(table.ln_pk_extra[index_tau])
        pk_nw_extra = None if ln_nowiggle_ratio is None else pk_l_extra * np.exp(ln_nowiggle_ratio[index_tau])
        state = NonlinearState(
            z=z,
            k=k_grid.k,
            pk_l=np.exp(table.ln_pk[index_tau]),
            k_extra=k_grid.k_extra,
            pk_l_extra=pk_l_extra,
            Omega_m=float(background.Omega_m_of_z(z)),
            Omega_de=float(background.Omega_de_of_z(z)),
            w=float(background.w_of_z(z)),
            growth=float(background.growth_factor(z)),
            f_nu=background.f_nu,
            h=background.h,
            Omega_m0=background.Omega_m,
            pk_nw_extra=pk_nw_extra,
            background=background,
        )
        if self.pk_eq is not None:
            state = self.pk_eq.adapt(state, tau_grid.ln_tau[index_tau])
        return state

    def run(self, table, k_grid, tau_grid, ln_nowiggle_ratio=None):
        """
        Correction factors of one spectrum type at all stored times.

        Times are processed from the latest backwards. The first time found in
        the linear regime fixes ``index_tau_min_nl``; it and all earlier times
        get a factor of exactly one and k_nl = k_max.
        """
        ln_tau_size = tau_grid.ln_tau_size
        corr = np.ones((ln_tau_size, k_grid.k_size))
        k_nl = np.full(ln_tau_size, k_grid.k_max)
        index_tau_min_nl = 0
        for index_tau in range(ln_tau_size - 1, -1, -1):
            state = self.state(table, k_grid, tau_grid, index_tau, ln_nowiggle_ratio)
            result = self.strategy.correction(state)
            if result is None:
                index_tau_min_nl = index_tau + 1
                if self.verbose > 1:
                    print(f'JAX-PK: {self.strategy.name} finds the spectrum linear for z >= {state.z:.4g}')
                break
            if not np.all(np.isfinite(result.nl_corr_density)) or np.any(result.nl_corr_density <= 0):
                raise NumericalError(f'{self.strategy.name} returned an invalid correction at z={state.z:.4g}.')
            corr[index_tau] = result.nl_corr_density
            k_nl[index_tau] = result.k_nl
            if self.verbose > 1:
                print(f'JAX-PK: {self.strategy.name} at z={state.z:.4g}, k_nl={result.k_nl:.4g} 1/Mpc')

        table.ln_pk_nl = table.ln_pk + 2. * np.log(corr)
        table.ddln_pk_nl = natural_spline_dd(tau_grid.ln_tau, table.ln_pk_nl)
        return NonlinearTable(index_pk=table.index_pk, nl_corr_density=corr, k_nl=k_nl,
                              index_tau_min_nl=index_tau_min_nl)
