import pytest
import numpy as np
from jaxpk.indices import build_indices, combine_pairs, SpectrumType
from jaxpk.cosmology import PowerLawPrimordial
from jaxpk.errors import ConfigurationError

k = np.logspace(-4, 0, 50)


####################INDEX TESTS####################
def test_both_types_one_ic():
    indices = build_indices(True, True, 1, PowerLawPrimordial(), k)
    assert indices.index_pk_m == 0
    assert indices.index_pk_cb == 1
    assert indices.index_pk_total == indices.index_pk_m
    assert indices.index_pk_cluster == indices.index_pk_cb
    assert indices.pk_size == 2
    assert indices.ic_ic_size == 1
    assert indices.types == [(0, SpectrumType.M), (1, SpectrumType.CB)]

def test_cluster_falls_back_to_m():
    indices = build_indices(True, False, 1, PowerLawPrimordial(), k)
    assert indices.index_pk_cluster == indices.index_pk_m == 0
    assert indices.index_pk_cb is None

def test_only_cb():
    indices = build_indices(False, True, 1, PowerLawPrimordial(), k)
    assert indices.index_pk_cb == 0
    assert indices.index_pk_m is None
    assert indices.index_pk_cluster == 0

def test_no_type_fails():
    with pytest.raises(ConfigurationError, match="No power spectrum type"):
        build_indices(False, False, 1, PowerLawPrimordial(), k)

def test_ic_size_mismatch():
    with pytest.raises(ConfigurationError, match="initial conditions"):
        build_indices(True, False, 2, PowerLawPrimordial(), k)

def test_species_lookup():
    indices = build_indices(True, False, 1, PowerLawPrimordial(), k)
    assert indices.species(0) is SpectrumType.M
    with pytest.raises(ConfigurationError):
        indices.species(1)

####################PAIR TESTS####################
def test_pair_enumeration():
    primordial = PowerLawPrimordial(ic_amplitudes=[2e-9, 1e-10, 1e-11], correlations={(0, 1): 0.5})
    indices = build_indices(True, False, 3, primordial, k)
    assert indices.ic_ic_size == 6
    assert indices.pairs == ((0, 0), (0, 1), (0, 2), (1, 1), (1, 2), (2, 2))
    for index, (i, j) in enumerate(indices.pairs):
        assert indices.index_ic1_ic2(i, j) == index
        assert indices.index_ic1_ic2(j, i) == index
    assert indices.is_non_zero == (True, True, False, True, False, True)
    assert indices.diagonal == [0, 3, 5]

def test_pair_index_out_of_range():
    indices = build_indices(True, False, 1, PowerLawPrimordial(), k)
    with pytest.raises(ConfigurationError):
        indices.index_ic1_ic2(0, 1)

def test_combine_fully_correlated():
    primordial = PowerLawPrimordial(ic_amplitudes=[2e-9, 1e-9], correlations={(0, 1): 1.})
    indices = build_indices(True, False, 2, primordial, k)
    P1, P2 = 4., 9.
    ln_pk_ic = np.array([np.log(P1), 1., np.log(P2)])
    assert np.isclose(combine_pairs(ln_pk_ic, indices), (np.sqrt(P1) + np.sqrt(P2))**2)
    ln_pk_ic[1] = -1.
    assert np.isclose(combine_pairs(ln_pk_ic, indices), (np.sqrt(P1) - np.sqrt(P2))**2)

def test_combine_uncorrelated_ignores_cross():
    primordial = PowerLawPrimordial(ic_amplitudes=[2e-9, 1e-9])
    indices = build_indices(True, False, 2, primordial, k)
    ln_pk_ic = np.array([[np.log(4.), 0.7, np.log(9.)]])
    assert np.allclose(combine_pairs(ln_pk_ic, indices), [13.])
