import pytest
import numpy as np
from jaxpk import JAXPK, FourierConfig, PrecisionConfig
from jaxpk.config import PkOutput
from jaxpk.cosmology import W0WaBackground, EisensteinHuPerturbations, PowerLawPrimordial
from jaxpk.halofit import Halofit
from jaxpk.hmcode import nfw_window, sheth_tormen
from jaxpk.nonlinear import NonlinearDispatcher, build_pk_eq, index_pk_eq_w, index_pk_eq_Omega_m
from jaxpk.nonlinear_base import NonlinearResult, NoCorrection
from jaxpk.errors import ConfigurationError, NumericalError, NonlinearNotAvailableError

background = W0WaBackground(z_max=100.)
primordial = PowerLawPrimordial()
z_list = [60., 20., 5., 2., 1., 0.5, 0.]
perturbations = EisensteinHuPerturbations(background, k_max=5., z_list=z_list)
low_z_perturbations = EisensteinHuPerturbations(background, k_max=5., z_list=[2., 1., 0.5, 0.])


def make_config(method, z_max_pk, **kwargs):
    cfg = FourierConfig()
    cfg.method = method
    cfg.z_max_pk = z_max_pk
    for key, value in kwargs.items():
        setattr(cfg, key, value)
    return cfg


@pytest.fixture(scope='module')
def halofit():
    return JAXPK(background, perturbations, primordial, make_config('halofit', 60.))


@pytest.fixture(scope='module')
def hmcode():
    return JAXPK(background, low_z_perturbations, primordial, make_config('hmcode', 2.))


####################HALOFIT TESTS####################
def test_halofit_enhancement(halofit):
    pk_l, _ = halofit.pk_at_k_and_z(1., 0.)
    pk_nl, _ = halofit.pk_at_k_and_z(1., 0., pk_output=PkOutput.NONLINEAR)
    assert pk_nl > 1.5 * pk_l

def test_halofit_linear_on_large_scales(halofit):
    table = halofit.tables[0]
    nonlinear = halofit.nonlinear[0]
    large = halofit.k <= 1e-3
    assert np.any(large)
    assert np.all(nonlinear.nl_corr_density[:, large] == 1.)
    assert np.allclose(table.ln_pk_nl[-1, large], table.ln_pk[-1, large], rtol=0., atol=1e-12)

def test_halofit_linear_at_early_times(halofit):
    index_tau_min_nl = halofit.index_tau_min_nl
    assert 0 < index_tau_min_nl < halofit.tau_grid.ln_tau_size
    table = halofit.tables[0]
    nonlinear = halofit.nonlinear[0]
    assert np.all(table.ln_pk_nl[:index_tau_min_nl] == table.ln_pk[:index_tau_min_nl])
    assert np.all(nonlinear.k_nl[:index_tau_min_nl] == halofit.k_grid.k_max)
    assert nonlinear.ln_tau_size_nl == halofit.tau_grid.ln_tau_size - index_tau_min_nl
    pk_l, _ = halofit.pk_at_z(60.)
    pk_nl, _ = halofit.pk_at_z(60., pk_output='nonlinear')
    assert np.allclose(pk_nl, pk_l, rtol=1e-10)

def test_k_nl_grows_with_time(halofit):
    k_nl_1, k_nl_cb = halofit.k_nl_at_z(1.)
    k_nl_0, _ = halofit.k_nl_at_z(0.)
    assert k_nl_cb is None
    assert 0. < k_nl_0 < k_nl_1

def test_nonlinear_correction_held_beyond_k_max(halofit):
    k_max = halofit.k_grid.k_max
    ratio_edge = (halofit.pk_at_k_and_z(k_max, 0., pk_output='nonlinear')[0]
                  / halofit.pk_at_k_and_z(k_max, 0.)[0])
    ratio_beyond = (halofit.pk_at_k_and_z(3. * k_max, 0., pk_output='nonlinear')[0]
                    / halofit.pk_at_k_and_z(3. * k_max, 0.)[0])
    assert np.isclose(ratio_beyond, ratio_edge, rtol=1e-8)

def test_halofit_neutrino_mass_limit():
    heavy = W0WaBackground(z_max=10., m_ncdm_tot=11.)
    with pytest.raises(ConfigurationError, match="neutrino mass"):
        Halofit(heavy, PrecisionConfig())

def test_halofit_needs_high_k():
    cfg = make_config('halofit', 0., extrapolation_method='zero')
    perts = EisensteinHuPerturbations(background, k_max=2., z_list=[0.])
    with pytest.raises(ConfigurationError, match="Halofit needs"):
        JAXPK(background, perts, primordial, cfg)

####################HMCODE TESTS####################
def test_hmcode_enhancement(hmcode):
    pk_l, _ = hmcode.pk_at_k_and_z(1., 0.)
    pk_nl, _ = hmcode.pk_at_k_and_z(1., 0., pk_output='nonlinear')
    assert pk_nl > pk_l
    k_nl, _ = hmcode.k_nl_at_z(0.)
    assert 0.05 < k_nl < 2.

def test_hmcode_feedback_suppresses_small_scales(hmcode):
    agn = JAXPK(background, low_z_perturbations, primordial, make_config('hmcode', 2., feedback='owls_agn'))
    pk_dmonly, _ = hmcode.pk_at_k_and_z(4., 0., pk_output='nonlinear')
    pk_agn, _ = agn.pk_at_k_and_z(4., 0., pk_output='nonlinear')
    assert pk_agn < pk_dmonly
    # Large scales are unaffected
    assert np.isclose(agn.pk_at_k_and_z(1e-3, 0., pk_output='nonlinear')[0],
                      hmcode.pk_at_k_and_z(1e-3, 0., pk_output='nonlinear')[0], rtol=1e-2)

def test_hmcode_nonlinear_scale_outside_mass_table():
    # sigma(M = 10^11 Msun) > 1 at z = 0, so sigma = 1 is not bracketed by the halo masses
    precision = PrecisionConfig(hmcode_log10_mass_min=9., hmcode_log10_mass_max=11.)
    with pytest.raises(NumericalError, match="outside the halo mass table"):
        JAXPK(background, low_z_perturbations, primordial, make_config('hmcode', 0.), precision)

def test_hmcode_dewiggle():
    cfg = make_config('hmcode', 0., has_pk_numerical_nowiggle=True, hmcode_dewiggle=True)
    engine = JAXPK(background, low_z_perturbations, primordial, cfg)
    assert engine.strategy.dewiggle
    pk_nl, _ = engine.pk_at_z(0., pk_output='nonlinear')
    assert np.all(np.isfinite(pk_nl)) and np.all(pk_nl > 0)

def test_nfw_window_limits():
    k = np.array([1e-4, 1e-2])
    window = nfw_window(k[:, None], np.array([[0.1]]), np.array([[5.]]))
    assert np.allclose(window[:, 0], 1., atol=1e-4)
    assert nfw_window(np.array([[100.]]), np.array([[0.1]]), np.array([[5.]]))[0, 0] < 0.1

def test_sheth_tormen_positive():
    nu = np.linspace(0.1, 5., 50)
    assert np.all(sheth_tormen(nu) > 0)
    assert sheth_tormen(5.) < sheth_tormen(1.)

####################DISPATCH TESTS####################
class StepCorrection:
    name = 'step'

    def __init__(self, factor=2.):
        self.factor = factor
        self.redshifts = []

    def correction(self, state):
        self.redshifts.append(state.z)
        if state.z > 0.9:
            return None
        return NonlinearResult(nl_corr_density=np.full(state.k.size, self.factor), k_nl=0.5)


@pytest.fixture
def linear_engine():
    perts = EisensteinHuPerturbations(background, k_max=5., z_list=np.linspace(2., 0., 11))
    cfg = FourierConfig()
    cfg.z_max_pk = 2.
    return JAXPK(background, perts, primordial, cfg)

def test_dispatcher_runs_backwards(linear_engine):
    strategy = StepCorrection()
    dispatcher = NonlinearDispatcher(strategy, background)
    table = linear_engine.tables[0]
    result = dispatcher.run(table, linear_engine.k_grid, linear_engine.tau_grid)
    # z = 0, 0.2, ..., 0.8 are corrected, z = 1 stops the loop
    assert result.index_tau_min_nl == 6
    assert len(strategy.redshifts) == 6
    assert np.all(np.diff(strategy.redshifts) > 0)
    assert np.all(result.nl_corr_density[6:] == 2.)
    assert np.all(result.nl_corr_density[:6] == 1.)
    assert np.all(result.k_nl[6:] == 0.5)
    assert np.allclose(table.ln_pk_nl[6:], table.ln_pk[6:] + 2. * np.log(2.))

def test_dispatcher_rejects_invalid_correction(linear_engine):
    dispatcher = NonlinearDispatcher(StepCorrection(factor=-1.), background)
    with pytest.raises(NumericalError, match="invalid correction"):
        dispatcher.run(linear_engine.tables[0], linear_engine.k_grid, linear_engine.tau_grid)

def test_no_correction_strategy(linear_engine):
    assert NoCorrection().correction(None) is None
    assert linear_engine.nonlinear is None
    with pytest.raises(NonlinearNotAvailableError):
        linear_engine.k_nl_at_z(0.)
    with pytest.raises(NonlinearNotAvailableError):
        linear_engine.pk_at_z(0., pk_output='nonlinear')
    with pytest.raises(NonlinearNotAvailableError):
        linear_engine.index_tau_min_nl

####################PK_EQ TESTS####################
def test_pk_eq_constant_w():
    constant = W0WaBackground(z_max=20., w0=-0.9)
    z = np.array([2., 1., 0.])
    ln_tau = np.log(constant.tau_of_z(z))
    table = build_pk_eq(constant, ln_tau, z, 10.)
    assert np.allclose(table.w_and_omega[:, index_pk_eq_w], -0.9, atol=1e-5)
    assert np.allclose(table.w_and_omega[:, index_pk_eq_Omega_m], constant.Omega_m_of_z(z), rtol=1e-5)
    w_eq, Omega_m_eq = table.at(ln_tau[1])
    assert np.isclose(w_eq, -0.9, atol=1e-5)

def test_pk_eq_no_bracket():
    phantom = W0WaBackground(z_max=20., w0=-3.5)
    z = np.array([0.])
    with pytest.raises(NumericalError, match="pk_eq"):
        build_pk_eq(phantom, np.log(phantom.tau_of_z(z)), z, 10.)

def test_pk_eq_skipped_for_constant_w():
    cfg = make_config('halofit', 2., has_pk_eq=True)
    engine = JAXPK(background, low_z_perturbations, primordial, cfg)
    assert engine.pk_eq is None

def test_pk_eq_changes_nonlinear_spectrum():
    w0wa = W0WaBackground(z_max=20., w0=-0.9, wa=-0.3)
    perts = EisensteinHuPerturbations(w0wa, k_max=5., z_list=[1., 0.5, 0.])
    with_eq = JAXPK(w0wa, perts, primordial, make_config('halofit', 1., has_pk_eq=True))
    without_eq = JAXPK(w0wa, perts, primordial, make_config('halofit', 1.))
    assert with_eq.pk_eq is not None
    w_eq = with_eq.pk_eq.w_and_omega[:, index_pk_eq_w]
    assert np.all((w_eq > -1.2) & (w_eq < -0.9))
    pk_eq_nl, _ = with_eq.pk_at_k_and_z(1., 0., pk_output='nonlinear')
    pk_nl, _ = without_eq.pk_at_k_and_z(1., 0., pk_output='nonlinear')
    assert not np.isclose(pk_eq_nl, pk_nl, rtol=1e-8)
    assert np.isclose(pk_eq_nl, pk_nl, rtol=0.2)
