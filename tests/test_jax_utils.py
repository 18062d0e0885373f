import pytest
import numpy as np
from scipy.interpolate import CubicSpline
from jax import numpy as jnp
from jaxpk.jax_utils import (tophat_window, tophat_window_prime, splint, natural_spline_dd, delta_ratio_core,
                             sigma_v_core, gaussian_sigma_integrals, sigma_tophat_core)


####################WINDOW TESTS####################
def test_tophat_window_limits():
    x = jnp.array([0., 1e-4, 5e-3])
    assert np.allclose(tophat_window(x), 1., atol=1e-5)
    assert np.allclose(tophat_window_prime(x), -np.asarray(x) / 5., atol=1e-8)

def test_tophat_window_continuous_at_switch():
    below = tophat_window(jnp.array([1e-2 * (1. - 1e-9)]))
    above = tophat_window(jnp.array([1e-2 * (1. + 1e-9)]))
    assert np.isclose(below[0], above[0], rtol=1e-10)

def test_tophat_window_prime_finite_difference():
    x = np.array([0.05, 0.5, 2., 7.])
    h = 1e-4
    numerical = (np.asarray(tophat_window(jnp.asarray(x + h))) - np.asarray(tophat_window(jnp.asarray(x - h)))) / (2. * h)
    assert np.allclose(tophat_window_prime(jnp.asarray(x)), numerical, atol=1e-7)

####################SPLINE TESTS####################
def test_splint_matches_natural_spline():
    x = np.linspace(0., 3., 12)
    y = np.cos(x)
    dd = natural_spline_dd(x, y)
    x0 = np.linspace(0., 3., 37)
    expected = CubicSpline(x, y, bc_type='natural')(x0)
    result = np.array([splint(jnp.asarray(x), jnp.asarray(y), jnp.asarray(dd), xi) for xi in x0])
    assert np.allclose(result, expected, atol=1e-12)

def test_splint_broadcasts_tables():
    x = np.linspace(0., 1., 5)
    y = np.stack([x, 2. * x], axis=1)[:, :, None] * np.ones((1, 1, 3))
    dd = natural_spline_dd(x, y)
    out = np.asarray(splint(jnp.asarray(x), jnp.asarray(y), jnp.asarray(dd), 0.3))
    assert out.shape == (2, 3)
    assert np.allclose(out[0], 0.3) and np.allclose(out[1], 0.6)

####################EXTRAPOLATION KERNEL TESTS####################
def test_delta_ratio_core():
    x = jnp.array([1., 2., 10.])
    n = jnp.array(1.5)
    assert np.allclose(delta_ratio_core(x, n, 'zero'), 0.)
    assert np.allclose(delta_ratio_core(x, n, 'only_max'), 1.)
    assert np.allclose(delta_ratio_core(x, n, 'only_max_units'), np.array([1., 0.25, 0.01]))
    assert np.allclose(delta_ratio_core(x, n, 'max_scaled'), np.array([1., 2., 10.])**1.5)
    assert np.allclose(delta_ratio_core(x, n, 'hmcode'), 1. + 1.5 * np.log([1., 2., 10.]))
    assert np.allclose(delta_ratio_core(x, jnp.array(-0.5), 'hmcode'), 1.)
    with pytest.raises(ValueError):
        delta_ratio_core(x, n, 'user_defined')

####################INTEGRAL TESTS####################
def test_gaussian_integrals_power_law():
    # P = A k: sum1 = A / (2 pi^2) int k^3 exp(-k^2 R^2) dk = A / (4 pi^2 R^4)
    A, R = 3., 2.
    lnk = np.linspace(np.log(1e-4), np.log(20.), 4000)
    pk = A * np.exp(lnk)
    sum1, sum2, sum3 = gaussian_sigma_integrals(R, jnp.asarray(lnk), jnp.asarray(pk))
    assert np.isclose(sum1, A / (4. * np.pi**2 * R**4), rtol=1e-5)
    assert sum2 > 0

def test_sigma_v_power_law():
    # P = A k^-2: sigma_v^2 = A / (6 pi^2) int k^-2 dk
    lnk = np.linspace(np.log(0.1), np.log(1e4), 4000)
    A = 5.
    sigma_v = sigma_v_core(jnp.asarray(lnk), jnp.asarray(A * np.exp(-2. * lnk)))
    assert np.isclose(sigma_v**2, A / (6. * np.pi**2) * (1. / 0.1 - 1e-4), rtol=1e-4)

# First zero of the top-hat window, tan x = x
X_ZERO = 4.493409457909064

def test_sigma_tail_not_hidden_by_window_zero():
    # Delta^2 = 1 with the upper limit on a zero of W: the last node alone would look converged
    lnk = np.linspace(np.log(1e-2), np.log(X_ZERO), 400)
    pk = 2. * np.pi**2 * np.exp(-3. * lnk)
    _, tail = sigma_tophat_core(1., jnp.asarray(lnk), jnp.asarray(pk))
    assert abs(float(tophat_window(jnp.asarray([X_ZERO]))[0])) < 1e-10
    assert tail > 1e-3

def test_sigma_prime_tail_uses_its_integrand():
    lnk = np.linspace(np.log(1e-2), np.log(30.), 400)
    k = np.exp(lnk)
    pk = 2. * np.pi**2 / k**3
    _, tail = sigma_tophat_core(1., jnp.asarray(lnk), jnp.asarray(pk), 'sigma_prime')
    dintegrand = 2. * np.asarray(tophat_window(jnp.asarray(k))) * np.asarray(tophat_window_prime(jnp.asarray(k))) * k
    expected = np.max(np.abs(dintegrand[-10:])) / np.max(np.abs(dintegrand))
    assert np.isclose(tail, expected, rtol=1e-8)
