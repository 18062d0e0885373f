from dataclasses import dataclass
from typing import Optional, Any
import numpy as np


@dataclass(frozen=True)
class NonlinearState:
    """Everything a nonlinear strategy may use at one stored time."""
    z: float
    k: np.ndarray
    pk_l: np.ndarray
    k_extra: np.ndarray
    pk_l_extra: np.ndarray
    Omega_m: float
    Omega_de: float
    w: float
    growth: float
    f_nu: float
    h: float
    Omega_m0: float
    pk_nw_extra: Optional[np.ndarray] = None
    background: Any = None


@dataclass(frozen=True)
class NonlinearResult:
    # sqrt(P_NL / P_L) on the native k grid
    nl_corr_density: np.ndarray
    k_nl: float


class NoCorrection:
    """Strategy for a purely linear run: every time is in the linear regime."""
    name = 'none'

    def correction(self, state):
        return None
