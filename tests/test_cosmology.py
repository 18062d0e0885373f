import pytest
import numpy as np
from jaxpk.cosmology import (W0WaBackground, PowerLawPrimordial, TabulatedPerturbations, EisensteinHuPerturbations,
                             sound_horizon_fit, eisenstein_hu_nowiggle_transfer)
from jaxpk.errors import ConfigurationError, RangeError


@pytest.fixture(scope='module')
def background():
    return W0WaBackground(z_max=50.)


####################BACKGROUND TESTS####################
def test_today(background):
    assert np.isclose(background.hubble(0.), background.H0)
    assert np.isclose(background.Omega_m_of_z(0.), background.Omega_m)
    assert np.isclose(background.Omega_m + background.Omega_r + background.Omega_de, 1.)
    assert np.isclose(background.growth_factor(0.), 1.)
    assert np.isclose(background.tau_of_z(0.), background.tau0)

def test_tau_round_trip(background):
    z = np.array([0.1, 1., 5., 30.])
    tau = background.tau_of_z(z)
    assert np.all(np.diff(tau) < 0)
    assert np.allclose(background.z_of_tau(tau), z, rtol=1e-6)

def test_conformal_distance(background):
    distance = background.conformal_distance(0., 2.)
    assert np.isclose(distance, background.tau0 - background.tau_of_z(2.), rtol=1e-5)

def test_growth_matter_era(background):
    # D ~ a deep in matter domination
    ratio = background.growth_factor(40.) / background.growth_factor(20.)
    assert np.isclose(ratio, 21. / 41., rtol=1e-2)
    z = np.linspace(0., 10., 11)
    assert np.all(np.diff(background.growth_factor(z)) < 0)

def test_cpl_equation_of_state():
    background = W0WaBackground(z_max=10., w0=-0.9, wa=-0.3)
    assert np.isclose(background.w_of_z(0.), -0.9)
    assert np.isclose(background.w_of_z(1.), -1.05)
    assert background.Omega_de_of_z(0.) == pytest.approx(background.Omega_de)

def test_background_range(background):
    with pytest.raises(RangeError):
        background.tau_of_z(60.)
    with pytest.raises(RangeError):
        background.growth_factor(-0.5)
    with pytest.raises(RangeError):
        background.z_of_tau(2. * background.tau0)

def test_background_validation():
    with pytest.raises(ConfigurationError):
        W0WaBackground(Omega_b=0.4, Omega_m=0.3)
    with pytest.raises(ConfigurationError):
        W0WaBackground(h=-0.7)

def test_neutrino_fraction():
    background = W0WaBackground(m_ncdm_tot=0.06, z_max=10.)
    assert np.isclose(background.f_nu, 0.06 / 93.14 / 0.67**2 / 0.31)

####################PRIMORDIAL TESTS####################
def test_power_law_pivot():
    primordial = PowerLawPrimordial(A_s=2e-9, n_s=0.96, k_pivot=0.05)
    assert np.isclose(primordial.ln_pk_ic(0.05, 0), np.log(2e-9))
    assert np.isclose(primordial.ln_pk_ic(0.5, 0) - primordial.ln_pk_ic(0.05, 0), -0.04 * np.log(10.))

def test_correlations():
    primordial = PowerLawPrimordial(ic_amplitudes=[1e-9, 1e-9, 1e-9], correlations={(2, 0): -0.3})
    k = np.array([0.01, 0.1])
    assert np.all(primordial.cross_coefficient(k, 0, 2) == -0.3)
    assert np.all(primordial.cross_coefficient(k, 2, 0) == -0.3)
    assert np.all(primordial.cross_coefficient(k, 0, 1) == 0.)
    assert np.all(primordial.cross_coefficient(k, 1, 1) == 1.)

@pytest.mark.parametrize("kwargs", [
    {'correlations': {(0, 1): 1.5}, 'ic_amplitudes': [1e-9, 1e-9]},
    {'ic_amplitudes': [1e-9, -1e-9]},
    {'ic_amplitudes': [1e-9, 1e-9], 'ic_tilts': [1.]},
])
def test_primordial_validation(kwargs):
    with pytest.raises(ConfigurationError):
        PowerLawPrimordial(**kwargs)

####################PERTURBATION TESTS####################
def test_tabulated_shapes():
    k = np.logspace(-3, 0, 10)
    tau = np.array([100., 200.])
    perturbations = TabulatedPerturbations(k, tau, np.ones((2, 10)))
    assert perturbations.ic_size == 1 and not perturbations.has_cb
    assert perturbations.delta('m', 0, 1).shape == (10,)
    with pytest.raises(ConfigurationError, match="species"):
        perturbations.delta('cb', 0, 0)
    with pytest.raises(ConfigurationError, match="shape"):
        TabulatedPerturbations(k, tau, np.ones((3, 10)))
    with pytest.raises(ConfigurationError, match="same shape"):
        TabulatedPerturbations(k, tau, np.ones((2, 10)), np.ones((2, 2, 10)))

def test_eisenstein_hu_perturbations(background):
    perturbations = EisensteinHuPerturbations(background, k_max=1., z_list=[0., 2.], ic_ratios=[1., -0.5])
    assert np.all(perturbations.z == [2., 0.])
    assert np.all(np.diff(perturbations.tau) > 0)
    assert perturbations.ic_size == 2
    delta_0 = perturbations.delta('m', 0, 1)
    assert np.allclose(perturbations.delta('m', 1, 1), -0.5 * delta_0)
    assert np.allclose(perturbations.delta('m', 0, 0) / delta_0, background.growth_factor(2.))

def test_eisenstein_hu_neutrinos():
    background = W0WaBackground(z_max=10., m_ncdm_tot=0.3)
    perturbations = EisensteinHuPerturbations(background, k_max=1., z_list=[0.])
    assert perturbations.has_cb
    ratio = perturbations.delta('m', 0, 0) / perturbations.delta('cb', 0, 0)
    assert ratio[-1] < ratio[0] <= 1.
    assert ratio[-1] > 1. - background.f_nu

def test_eisenstein_hu_fits():
    assert 140. < sound_horizon_fit(0.31, 0.049, 0.67) < 160.
    transfer = eisenstein_hu_nowiggle_transfer(np.array([1e-5, 1e-2, 1.]), 0.31, 0.049, 0.67)
    assert np.isclose(transfer[0], 1., atol=1e-3)
    assert np.all(np.diff(transfer) < 0)
