from dataclasses import dataclass
from typing import Optional
import numpy as np
from scipy.interpolate import CubicSpline
from scipy.signal import savgol_filter
from jaxpk.cosmology import eisenstein_hu_nowiggle_transfer
from jaxpk.jax_utils import natural_spline_dd


@dataclass
class NowiggleTable:
    """
    Smooth (BAO-free) counterparts of the linear spectrum on the extended grid.

    ``ln_pk_l_an_extra`` is the analytic no-wiggle spectrum at the latest
    stored time with its ln k spline; ``ln_pk_l_nw_extra`` is the numerically
    de-wiggled spectrum at every stored time with its ln tau spline.
    """
    pk_l_nw_index: int
    ln_pk_l_an_extra: np.ndarray
    ddln_pk_l_an_extra: np.ndarray
    ln_pk_l_nw_extra: Optional[np.ndarray] = None
    ddln_pk_l_nw_extra: Optional[np.ndarray] = None


def analytic_nowiggle(background, primordial, ln_k_extra, ln_pk_extra_today, k_norm):
    """
    Eisenstein & Hu no-wiggle spectrum normalised to the linear spectrum on large scales.

    Parameters
    ----------
    background : Background
        Provides Omega_m, Omega_b, h and T_cmb of the fitting formula.
    primordial : Primordial
        Shape of the primordial spectrum of the first initial condition.
    ln_k_extra : ndarray
        Extended ln k grid.
    ln_pk_extra_today : ndarray
        Linear ln P on the extended grid at the latest stored time.
    k_norm : float
        Wavenumbers below k_norm fix the normalisation; the first node is used
        if none is that small.

    Returns
    -------
    ln_pk_an, ddln_pk_an : ndarray
        ln P and its second derivative with respect to ln k.
    """
    k = np.exp(ln_k_extra)
    transfer = eisenstein_hu_nowiggle_transfer(k, background.Omega_m, background.Omega_b, background.h, background.T_cmb)
    # P ~ k^{-3} Delta_prim (k^2 T)^2 up to a constant
    shape = primordial.ln_pk_ic(k, 0) + ln_k_extra + 2. * np.log(transfer)
    mask = k < k_norm
    if not np.any(mask):
        mask = np.zeros_like(k, dtype=bool)
        mask[0] = True
    offset = np.mean(ln_pk_extra_today[mask] - shape[mask])
    ln_pk_an = shape + offset
    return ln_pk_an, natural_spline_dd(ln_k_extra, ln_pk_an)


def numerical_nowiggle(ln_k_extra, ln_tau, ln_pk_extra, ln_pk_an, nk_wiggle, width, order):
    """
    De-wiggle the linear spectrum with a Savitzky-Golay filter in ln k.

    The ratio ln(P_L / P_an) is resampled on ``nk_wiggle`` points uniform in
    ln k, low-pass filtered with a window of ``width`` in ln k, and mapped
    back onto the extended grid.
    """
    u = np.linspace(ln_k_extra[0], ln_k_extra[-1], nk_wiggle)
    du = u[1] - u[0]
    window = int(width / du)
    window += 1 - window % 2
    window = max(window, order + 2 if order % 2 else order + 1)
    window = min(window, nk_wiggle - 1 + nk_wiggle % 2)

    residual = ln_pk_extra - ln_pk_an[None, :]
    resampled = CubicSpline(ln_k_extra, residual, axis=1)(u)
    smoothed = savgol_filter(resampled, window, order, axis=1)
    ln_pk_nw = CubicSpline(u, smoothed, axis=1)(ln_k_extra) + ln_pk_an[None, :]
    return ln_pk_nw, natural_spline_dd(ln_tau, ln_pk_nw)


def build_nowiggle(background, primordial, table, ln_k_extra, ln_tau, precision, numerical=False):
    ln_pk_an, ddln_pk_an = analytic_nowiggle(background, primordial, ln_k_extra, table.ln_pk_extra[-1],
                                             precision.nowiggle_k_norm)
    nowiggle = NowiggleTable(pk_l_nw_index=table.index_pk, ln_pk_l_an_extra=ln_pk_an, ddln_pk_l_an_extra=ddln_pk_an)
    if numerical:
        nowiggle.ln_pk_l_nw_extra, nowiggle.ddln_pk_l_nw_extra = numerical_nowiggle(
            ln_k_extra, ln_tau, table.ln_pk_extra, ln_pk_an,
            precision.nk_wiggle, precision.nowiggle_savgol_width, precision.nowiggle_savgol_order)
    return nowiggle
