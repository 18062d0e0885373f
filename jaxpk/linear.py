from dataclasses import dataclass
from typing import Optional
import numpy as np
from jaxpk.indices import SpectrumType, combine_pairs
from jaxpk.jax_utils import natural_spline_dd
from jaxpk.errors import NumericalError, ConfigurationError


@dataclass
class PowerTable:
    """
    Stored spectra of one spectrum type.

    Arrays are indexed ``[index_tau, index_k, index_ic1_ic2]`` for the
    per-pair table and ``[index_tau, index_k]`` for totals; the ``dd`` arrays
    are natural-spline second derivatives with respect to ln tau.
    """
    index_pk: int
    kind: SpectrumType
    ln_pk_ic: np.ndarray
    ddln_pk_ic: np.ndarray
    ln_pk: np.ndarray
    ddln_pk: np.ndarray
    ln_pk_extra: np.ndarray
    ddln_pk_extra: np.ndarray
    ln_pk_nl: Optional[np.ndarray] = None
    ddln_pk_nl: Optional[np.ndarray] = None

    def at_tau(self, index_tau):
        return self.ln_pk_ic[index_tau], self.ln_pk[index_tau]

    def pair(self, index_ic1_ic2):
        return self.ln_pk_ic[:, :, index_ic1_ic2]


def primordial_table(primordial, k, ic_size):
    return np.stack([primordial.ln_pk_ic(k, i) for i in range(ic_size)], axis=-1)


def assemble_pair_table(k, deltas, ln_primordial, cross, indices):
    """
    Per-pair table from transfer functions.

    Parameters
    ----------
    k : ndarray
        Wavenumbers, shape (nk,).
    deltas : ndarray
        Transfer functions, shape (ntau, ic_size, nk).
    ln_primordial : ndarray
        ln of the primordial spectra, shape (nk, ic_size).
    cross : ndarray
        Primordial cross-correlation coefficients, shape (nk, ic_ic_size).
    indices : SpectrumIndices

    Returns
    -------
    ndarray
        Shape (ntau, nk, ic_ic_size).
    """
    ntau, _, nk = deltas.shape
    table = np.zeros((ntau, nk, indices.ic_ic_size))
    ln_norm = np.log(2. * np.pi**2) - 3. * np.log(k)
    with np.errstate(divide='ignore'):
        ln_abs_delta = np.log(np.abs(deltas))
    sign = np.sign(deltas)
    for index, (i, j) in enumerate(indices.pairs):
        if i == j:
            table[:, :, index] = ln_norm[None, :] + ln_primordial[None, :, i] + 2. * ln_abs_delta[:, i, :]
        elif indices.is_non_zero[index]:
            table[:, :, index] = cross[None, :, index] * sign[:, i, :] * sign[:, j, :]
    diag = table[..., indices.diagonal]
    if not np.all(np.isfinite(diag)):
        raise NumericalError('Vanishing or non-finite transfer function: diagonal power spectrum is not positive.')
    return table


def assemble_linear(index_pk, kind, perturbations, primordial, indices, k_grid, tau_grid, extrapolator):
    """
    Linear spectra of one type at every stored time, with their extended tables.
    """
    species = kind.value
    if kind is SpectrumType.CB and not perturbations.has_cb:
        raise ConfigurationError('CDM+baryon spectrum requested but the perturbations provide no cb transfer functions.')

    k = k_grid.k
    deltas = np.array([[np.asarray(perturbations.delta(species, ic, index_tau), dtype=np.float64)
                        for ic in range(indices.ic_size)]
                       for index_tau in tau_grid.index_tau_perturbations])
    if deltas.shape[-1] != k.size:
        raise ConfigurationError(f'Transfer functions have {deltas.shape[-1]} wavenumbers, expected {k.size}.')

    ln_primordial = primordial_table(primordial, k, indices.ic_size)
    cross = np.stack([primordial.cross_coefficient(k, i, j) for i, j in indices.pairs], axis=-1)
    ln_pk_ic = assemble_pair_table(k, deltas, ln_primordial, cross, indices)

    pk = combine_pairs(ln_pk_ic, indices)
    if np.any(pk <= 0):
        index_tau, index_k = np.argwhere(pk <= 0)[0]
        raise NumericalError(f'Non-positive total {species} power spectrum at k={k[index_k]:.4g}, '
                             f'z={tau_grid.z[index_tau]:.4g}: cross-correlations exceed the auto spectra.')
    ln_pk = np.log(pk)

    n_tail = k_grid.k_size_extra - k_grid.k_size
    if n_tail > 0:
        k_tail = k_grid.k_extra[k_grid.k_size:]
        ln_pk_tail = np.array([extrapolator.high_k(k_tail, k_grid.ln_k[-2:], ln_pk_ic[index_tau, -2:])[1]
                               for index_tau in range(tau_grid.ln_tau_size)])
        ln_pk_extra = np.concatenate((ln_pk, ln_pk_tail), axis=1)
    else:
        ln_pk_extra = ln_pk.copy()
    if not np.all(np.isfinite(ln_pk_extra)):
        raise NumericalError(f'Extrapolated {species} power spectrum is not positive on the extended grid.')

    ln_tau = tau_grid.ln_tau
    return PowerTable(
        index_pk=index_pk,
        kind=kind,
        ln_pk_ic=ln_pk_ic,
        ddln_pk_ic=natural_spline_dd(ln_tau, ln_pk_ic),
        ln_pk=ln_pk,
        ddln_pk=natural_spline_dd(ln_tau, ln_pk),
        ln_pk_extra=ln_pk_extra,
        ddln_pk_extra=natural_spline_dd(ln_tau, ln_pk_extra),
    )
