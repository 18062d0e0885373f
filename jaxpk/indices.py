from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import numpy as np
from jaxpk.errors import ConfigurationError


class SpectrumType(Enum):
    M = 'm'
    CB = 'cb'


@dataclass(frozen=True)
class SpectrumIndices:
    index_pk_m: Optional[int]
    index_pk_cb: Optional[int]
    index_pk_total: int
    index_pk_cluster: int
    pk_size: int
    ic_size: int
    ic_ic_size: int
    is_non_zero: Tuple[bool, ...]
    pairs: Tuple[Tuple[int, int], ...] = field(repr=False)

    @property
    def types(self):
        """(index_pk, SpectrumType) for every computed spectrum, in index order."""
        out = []
        if self.index_pk_m is not None:
            out.append((self.index_pk_m, SpectrumType.M))
        if self.index_pk_cb is not None:
            out.append((self.index_pk_cb, SpectrumType.CB))
        return sorted(out)

    def species(self, index_pk):
        for index, kind in self.types:
            if index == index_pk:
                return kind
        raise ConfigurationError(f'No spectrum with index {index_pk}; computed indices are {[i for i, _ in self.types]}.')

    def index_ic1_ic2(self, index_ic1, index_ic2):
        i, j = min(index_ic1, index_ic2), max(index_ic1, index_ic2)
        if i < 0 or j >= self.ic_size:
            raise ConfigurationError(f'Initial condition index out of range [0, {self.ic_size}).')
        # Row-major enumeration of the upper triangle
        return i * self.ic_size - i * (i - 1) // 2 + (j - i)

    @property
    def diagonal(self):
        return [self.index_ic1_ic2(i, i) for i in range(self.ic_size)]


def build_indices(has_pk_m, has_pk_cb, ic_size, primordial, k):
    """
    Assign array indices to the requested spectra and initial-condition pairs.

    Parameters
    ----------
    has_pk_m, has_pk_cb : bool
        Whether the total-matter and CDM+baryon spectra are computed.
    ic_size : int
        Number of initial conditions of the perturbations.
    primordial : Primordial
        Provides the cross-correlation coefficients between initial conditions.
    k : array_like
        Wavenumbers at which correlations are probed.

    Returns
    -------
    SpectrumIndices
    """
    if not (has_pk_m or has_pk_cb):
        raise ConfigurationError('No power spectrum type requested: set has_pk_m and/or has_pk_cb.')
    if ic_size < 1:
        raise ConfigurationError('At least one initial condition is required.')
    if primordial.ic_size != ic_size:
        raise ConfigurationError(f'Primordial spectra have {primordial.ic_size} initial conditions, perturbations have {ic_size}.')

    index = 0
    index_pk_m = index_pk_cb = None
    if has_pk_m:
        index_pk_m = index
        index += 1
    if has_pk_cb:
        index_pk_cb = index
        index += 1

    index_pk_total = index_pk_m if index_pk_m is not None else index_pk_cb
    index_pk_cluster = index_pk_cb if index_pk_cb is not None else index_pk_m

    pairs = tuple((i, j) for i in range(ic_size) for j in range(i, ic_size))
    is_non_zero = tuple(
        True if i == j else bool(np.any(np.abs(primordial.cross_coefficient(k, i, j)) > 0.))
        for i, j in pairs
    )

    return SpectrumIndices(
        index_pk_m=index_pk_m,
        index_pk_cb=index_pk_cb,
        index_pk_total=index_pk_total,
        index_pk_cluster=index_pk_cluster,
        pk_size=index,
        ic_size=ic_size,
        ic_ic_size=len(pairs),
        is_non_zero=is_non_zero,
        pairs=pairs,
    )


def combine_pairs(ln_pk_ic, indices):
    """
    Total spectrum from the per-pair table (last axis indexes ic pairs).

    Diagonal entries hold ln P_ii, off-diagonal entries the cross-correlation
    coefficient c_ij, so that P = sum_i P_ii + 2 sum_{i<j} c_ij sqrt(P_ii P_jj).
    """
    ln_pk_ic = np.asarray(ln_pk_ic)
    pk_diag = [np.exp(ln_pk_ic[..., indices.index_ic1_ic2(i, i)]) for i in range(indices.ic_size)]
    total = np.sum(pk_diag, axis=0)
    for index, ((i, j), non_zero) in enumerate(zip(indices.pairs, indices.is_non_zero)):
        if i != j and non_zero:
            total = total + 2. * ln_pk_ic[..., index] * np.sqrt(pk_diag[i] * pk_diag[j])
    return total
