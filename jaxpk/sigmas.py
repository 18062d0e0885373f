import numpy as np
from scipy.interpolate import CubicSpline
from jax import numpy as jnp
from jaxpk.config import SigmaOutput, ExtrapolationMethod
from jaxpk.jax_utils import sigma_tophat_core, interpolate_table
from jaxpk.errors import ConfigurationError, NumericalError


def sigma_from_ln_pk(R, ln_k, ln_pk, k_per_decade, max_points, tol_integrand=None,
                     sigma_output=SigmaOutput.SIGMA):
    """
    Top-hat variance statistics of a tabulated spectrum.

    Parameters
    ----------
    R : float
        Smoothing radius in Mpc, must be positive.
    ln_k, ln_pk : ndarray
        Tabulated ln k and ln P(k); ln P is splined in ln k and resampled
        on a grid uniform in ln k.
    k_per_decade : float
        Sampling density of the quadrature grid.
    max_points : int
        Largest quadrature grid allowed.
    tol_integrand : float or None
        Largest allowed ratio of the integrand near k_max to its maximum.
        No convergence check is made when None.
    sigma_output : SigmaOutput
        SIGMA returns sigma(R), SIGMA_PRIME returns d sigma / dR and SIGMA_DISP
        returns the displacement dispersion.
    """
    if not R > 0:
        raise ConfigurationError(f'Smoothing radius must be positive, got R={R}.')
    if k_per_decade <= 0:
        raise ConfigurationError(f'k_per_decade must be positive, got {k_per_decade}.')
    decades = (ln_k[-1] - ln_k[0]) / np.log(10.)
    n_points = int(np.ceil(decades * k_per_decade)) + 1
    if n_points > max_points:
        raise NumericalError(f'Variance integral needs {n_points} points, more than the allowed {max_points}.')
    u = np.linspace(ln_k[0], ln_k[-1], n_points)
    pk = np.exp(CubicSpline(ln_k, ln_pk, bc_type='natural')(u))
    value, tail = sigma_tophat_core(R, jnp.asarray(u), jnp.asarray(pk), sigma_output.value)
    if tol_integrand is not None and float(tail) > tol_integrand:
        raise NumericalError(
            f'Variance integral for R={R} Mpc is not converged at k_max={np.exp(ln_k[-1]):.4g} 1/Mpc '
            f'(integrand ratio {float(tail):.3g} > {tol_integrand}); increase k_max_extra or R.')
    return float(value)


class SigmaIntegrator:
    """Variance statistics of the extended linear tables at arbitrary times."""

    def __init__(self, k_grid, tau_grid, precision, extrapolation_method):
        self.ln_k_extra = k_grid.ln_k_extra
        self.ln_tau = tau_grid.ln_tau
        self.precision = precision
        # The zero policy truncates the spectrum at k_max, where the integrand need not vanish
        self.check_convergence = extrapolation_method is not ExtrapolationMethod.ZERO

    def ln_pk_at(self, table, ln_tau):
        return interpolate_table(self.ln_tau, table.ln_pk_extra, table.ddln_pk_extra, ln_tau)

    def sigma(self, table, R, ln_tau, sigma_output=SigmaOutput.SIGMA, k_per_decade=None):
        if k_per_decade is None:
            k_per_decade = self.precision.sigma_k_per_decade
        tol = self.precision.sigma_tol_integrand if self.check_convergence else None
        return sigma_from_ln_pk(R, self.ln_k_extra, self.ln_pk_at(table, ln_tau), k_per_decade,
                                self.precision.sigma_max_points, tol, sigma_output)
