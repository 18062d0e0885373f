from functools import partial
import numpy as np
from scipy.interpolate import CubicSpline
import jax
from jax import numpy as jnp
from jax.numpy import pi, sin, cos, log, exp, sqrt
from jax import config, jit, vmap
config.update("jax_enable_x64", True)


def natural_spline_dd(x, y):
    """Second derivatives of the natural cubic spline through (x, y) along axis 0.

    Returns zeros when fewer than three nodes are available, in which case
    the spline reduces to linear interpolation.
    """
    y = np.asarray(y, dtype=np.float64)
    if len(x) < 3:
        return np.zeros_like(y)
    return CubicSpline(np.asarray(x, dtype=np.float64), y, axis=0, bc_type='natural')(x, 2)


@jit
def splint(x, y, dd, x0):
    n = x.shape[0]
    idx = jnp.clip(jnp.searchsorted(x, x0, side='right') - 1, 0, n - 2)
    h = x[idx + 1] - x[idx]
    a = (x[idx + 1] - x0) / h
    b = 1. - a
    shape = jnp.shape(a) + (1,) * (y.ndim - 1)
    a = jnp.reshape(a, shape)
    b = jnp.reshape(b, shape)
    h = jnp.reshape(h, shape)
    return a * y[idx] + b * y[idx + 1] + ((a**3 - a) * dd[idx] + (b**3 - b) * dd[idx + 1]) * h**2 / 6.


def interpolate_table(x, y, dd, x0):
    """Evaluate the tabulated spline (x, y, dd) at x0, tolerating a single node."""
    if len(x) == 1:
        return np.asarray(y[0])
    return np.asarray(splint(jnp.asarray(x), jnp.asarray(y), jnp.asarray(dd), x0))


@jit
def tophat_window(x):
    x2 = x * x
    small = x < 1e-2
    safe = jnp.where(small, 1., x)
    full = 3. * (sin(safe) - safe * cos(safe)) / safe**3
    return jnp.where(small, 1. - x2 / 10. + x2 * x2 / 280., full)


@jit
def tophat_window_prime(x):
    small = x < 1e-2
    safe = jnp.where(small, 1., x)
    full = 3. * ((safe**2 - 3.) * sin(safe) + 3. * safe * cos(safe)) / safe**4
    return jnp.where(small, -x / 5. + x**3 / 70., full)


_TAIL_NODES_ = 10


def _tail_ratio(integrand):
    # Largest |integrand| over the last nodes relative to its maximum
    return jnp.max(jnp.abs(integrand[-_TAIL_NODES_:])) / jnp.max(jnp.abs(integrand))


@partial(jit, static_argnames=["output"])
def sigma_tophat_core(R, lnk, pk, output='sigma'):
    k = exp(lnk)
    delta2 = k**3 * pk / (2. * pi**2)
    x = k * R
    W = tophat_window(x)
    integrand = delta2 * W**2
    sigma2 = jax.scipy.integrate.trapezoid(integrand, x=lnk)
    if output == 'sigma':
        return sqrt(sigma2), _tail_ratio(integrand)
    if output == 'sigma_prime':
        dintegrand = delta2 * 2. * W * tophat_window_prime(x) * k
        dsigma2 = jax.scipy.integrate.trapezoid(dintegrand, x=lnk)
        return dsigma2 / (2. * sqrt(sigma2)), _tail_ratio(dintegrand)
    disp = jax.scipy.integrate.trapezoid(integrand / k**2, x=lnk) / 3.
    return sqrt(disp), _tail_ratio(integrand / k**2)


def _sigma2_tophat(R, lnk, pk):
    k = exp(lnk)
    return jax.scipy.integrate.trapezoid(k**3 * pk / (2. * pi**2) * tophat_window(k * R)**2, x=lnk)


sigma2_tophat_array = jit(vmap(_sigma2_tophat, in_axes=(0, None, None)))


@jit
def sigma_v_core(lnk, pk):
    k = exp(lnk)
    return sqrt(jax.scipy.integrate.trapezoid(k * pk / (2. * pi**2), x=lnk) / 3.)


@jit
def gaussian_sigma_integrals(R, lnk, pk):
    k = exp(lnk)
    x2 = (k * R)**2
    base = pk * k**3 / (2. * pi**2) * exp(-x2)
    sum1 = jax.scipy.integrate.trapezoid(base, x=lnk)
    sum2 = jax.scipy.integrate.trapezoid(base * 2. * x2, x=lnk)
    sum3 = jax.scipy.integrate.trapezoid(base * 4. * x2 * (1. - x2), x=lnk)
    return sum1, sum2, sum3


@jit
def halofit_core(k, pk_lin, k_sigma, n_eff, C, Omega_m, Omega_v, w, fnu, h, k_min_nl):
    delta2_lin = pk_lin * k**3 / (2. * pi**2)
    y = k / k_sigma

    gam = 0.1971 - 0.0843 * n_eff + 0.8460 * C
    a = 10.**(1.5222 + 2.8553 * n_eff + 2.3706 * n_eff**2 + 0.9903 * n_eff**3
              + 0.2250 * n_eff**4 - 0.6038 * C + 0.1749 * Omega_v * (1. + w))
    b = 10.**(-0.5642 + 0.5864 * n_eff + 0.5716 * n_eff**2 - 1.5474 * C + 0.2279 * Omega_v * (1. + w))
    c = 10.**(0.3698 + 2.0404 * n_eff + 0.8161 * n_eff**2 + 0.5869 * C)
    xnu = 10.**(5.2105 + 3.6902 * n_eff)
    alpha = jnp.abs(6.0835 + 1.3373 * n_eff - 0.1959 * n_eff**2 - 5.5274 * C)
    beta = (2.0379 - 0.7354 * n_eff + 0.3157 * n_eff**2 + 1.2490 * n_eff**3
            + 0.3980 * n_eff**4 - 0.1682 * C + fnu * (1.081 + 0.395 * n_eff**2))

    # Interpolate between open and flat-Lambda fits, f_i = 1 for Omega_m = 1
    far_from_eds = jnp.abs(1. - Omega_m) > 0.01
    frac = jnp.where(far_from_eds, Omega_v / jnp.where(far_from_eds, 1. - Omega_m, 1.), 0.)
    f1 = jnp.where(far_from_eds, frac * Omega_m**-0.0307 + (1. - frac) * Omega_m**-0.0732, 1.)
    f2 = jnp.where(far_from_eds, frac * Omega_m**-0.0585 + (1. - frac) * Omega_m**-0.1423, 1.)
    f3 = jnp.where(far_from_eds, frac * Omega_m**0.0743 + (1. - frac) * Omega_m**0.0725, 1.)

    delta2_halo = a * y**(f1 * 3.) / (1. + b * y**f2 + (f3 * c * y)**(3. - gam))
    delta2_halo = delta2_halo / (1. + xnu * y**-2) * (1. + fnu * 0.977)

    kh = k / h
    delta2_lin_nu = delta2_lin * (1. + fnu * 47.48 * kh**2 / (1. + 1.5 * kh**2))
    delta2_quasi = delta2_lin * (1. + delta2_lin_nu)**beta / (1. + delta2_lin_nu * alpha) * exp(-y / 4. - y**2 / 8.)

    pk_nl = (delta2_halo + delta2_quasi) * 2. * pi**2 / k**3
    return jnp.where(k > k_min_nl, pk_nl, pk_lin)


@partial(jit, static_argnames=["method"])
def delta_ratio_core(x, n_max, method):
    # x = k / k_max >= 1, n_max is the logarithmic slope of delta at k_max
    if method == 'zero':
        return jnp.zeros_like(x * n_max)
    if method == 'only_max':
        return jnp.ones_like(x * n_max)
    if method == 'only_max_units':
        return x**-2 * jnp.ones_like(n_max)
    if method == 'max_scaled':
        return x**n_max
    if method == 'hmcode':
        return jnp.where(n_max > 0, 1. + n_max * log(x), 1.)
    raise ValueError(f"No closed form for extrapolation method {method}")
