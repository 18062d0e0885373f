import numpy as np
from jax import numpy as jnp
from jaxpk.config import ExtrapolationMethod
from jaxpk.indices import combine_pairs
from jaxpk.jax_utils import delta_ratio_core
from jaxpk.errors import NumericalError


class PowerExtrapolator:
    """
    Continues per-pair spectra outside the tabulated wavenumber range.

    Beyond k_max the density transfer function of each initial condition is
    continued according to the extrapolation policy and converted back to a
    power spectrum with the primordial spectrum. Below k_min the transfer
    function is taken to scale as k^2. The same object builds the extended
    tables and serves point queries, so both always agree; stored tables are
    never modified.
    """

    def __init__(self, method, primordial, indices, user_function=None):
        self.method = method
        self.primordial = primordial
        self.indices = indices
        self.user_function = user_function
        self._diag = indices.diagonal

    def _ln_primordial(self, k):
        return np.stack([self.primordial.ln_pk_ic(k, i) for i in range(self.indices.ic_size)], axis=-1)

    def _cross(self, k):
        return np.stack([self.primordial.cross_coefficient(k, i, j) for i, j in self.indices.pairs], axis=-1)

    def _ln_delta(self, ln_k, ln_pk_diag):
        # ln|delta| from P = 2 pi^2 / k^3 * Delta_prim * delta^2
        return 0.5 * (ln_pk_diag + 3. * ln_k[:, None] - self._ln_primordial(np.exp(ln_k)) - np.log(2. * np.pi**2))

    def _continue(self, k, k_ref, ln_pk_ic_ref, ln_ratio, sign):
        """Per-pair table at k from the reference node and ln|delta(k)/delta(k_ref)|."""
        k = np.atleast_1d(np.asarray(k, dtype=np.float64))
        ln_prim = self._ln_primordial(k) - self._ln_primordial(np.array([k_ref]))
        out = np.empty((k.size, self.indices.ic_ic_size))
        with np.errstate(divide='ignore'):
            ln_x = np.log(k / k_ref)[:, None]
            ln_pk_diag = ln_pk_ic_ref[self._diag][None, :] + ln_prim - 3. * ln_x + 2. * ln_ratio
        out[:, self._diag] = ln_pk_diag
        cross_ref = self._cross(np.array([k_ref]))[0]
        cross = self._cross(k)
        for index, (i, j) in enumerate(self.indices.pairs):
            if i == j:
                continue
            if cross_ref[index] == 0. or not self.indices.is_non_zero[index]:
                out[:, index] = 0.
            else:
                out[:, index] = np.clip(ln_pk_ic_ref[index] * cross[:, index] / cross_ref[index]
                                        * sign[:, i] * sign[:, j], -1., 1.)
        return out

    def high_k(self, k, ln_k_edge, ln_pk_ic_edge):
        """
        Per-pair spectra and total above k_max.

        Parameters
        ----------
        k : array_like
            Wavenumbers, all >= k_max.
        ln_k_edge : array_like
            ln k of the last two tabulated nodes.
        ln_pk_ic_edge : array_like
            Per-pair table at the last two nodes, shape (2, ic_ic_size).

        Returns
        -------
        ln_pk_ic : ndarray
            Shape (len(k), ic_ic_size).
        ln_pk : ndarray
            ln of the total spectrum, -inf where it vanishes.
        """
        k = np.atleast_1d(np.asarray(k, dtype=np.float64))
        ln_k_edge = np.asarray(ln_k_edge, dtype=np.float64)
        ln_pk_ic_edge = np.asarray(ln_pk_ic_edge, dtype=np.float64)
        k_max = np.exp(ln_k_edge[-1])
        ln_delta = self._ln_delta(ln_k_edge, ln_pk_ic_edge[:, self._diag])
        n_max = (ln_delta[1] - ln_delta[0]) / (ln_k_edge[1] - ln_k_edge[0])
        x = k / k_max

        if self.method is ExtrapolationMethod.USER_DEFINED:
            delta_max = np.exp(ln_delta[1])
            ratio = np.stack([np.asarray(self.user_function(k, k_max, delta_max[i]), dtype=np.float64) / delta_max[i]
                              for i in range(self.indices.ic_size)], axis=-1)
            ratio = np.broadcast_to(ratio, (k.size, self.indices.ic_size))
            if not np.all(np.isfinite(ratio)):
                raise NumericalError('User-defined extrapolation returned non-finite values.')
        else:
            ratio = np.asarray(delta_ratio_core(jnp.asarray(x[:, None]), jnp.asarray(n_max[None, :]), self.method.value))

        sign = np.where(ratio < 0, -1., 1.)
        with np.errstate(divide='ignore'):
            ln_ratio = np.log(np.abs(ratio))
        ln_pk_ic = self._continue(k, k_max, ln_pk_ic_edge[-1], ln_ratio, sign)
        with np.errstate(divide='ignore'):
            ln_pk = np.log(np.maximum(combine_pairs(ln_pk_ic, self.indices), 0.))
        return ln_pk_ic, ln_pk

    def low_k(self, k, ln_k_min, ln_pk_ic_min):
        """Per-pair spectra and total below k_min, with delta proportional to k^2."""
        k = np.atleast_1d(np.asarray(k, dtype=np.float64))
        k_min = np.exp(ln_k_min)
        ln_ratio = np.repeat(2. * np.log(k / k_min)[:, None], self.indices.ic_size, axis=1)
        sign = np.ones_like(ln_ratio)
        ln_pk_ic = self._continue(k, k_min, np.asarray(ln_pk_ic_min, dtype=np.float64), ln_ratio, sign)
        ln_pk = np.log(combine_pairs(ln_pk_ic, self.indices))
        return ln_pk_ic, ln_pk

    def describe(self):
        if self.method is ExtrapolationMethod.USER_DEFINED:
            return f'user-defined function {getattr(self.user_function, "__name__", repr(self.user_function))}'
        return self.method.value
