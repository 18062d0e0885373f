"""
This example demonstrates the key JAX-PK functionalities:
1. Linear and Halofit spectra of a w0-wa cosmology with massive neutrinos
2. Variance statistics and the nonlinear scale
3. No-wiggle spectra and the pk_eq equivalent-model correction
"""

import numpy as np
import time
from jaxpk import JAXPK, FourierConfig, PrecisionConfig
from jaxpk.cosmology import W0WaBackground, EisensteinHuPerturbations, PowerLawPrimordial


def main():
    """Simple demonstration of JAX-PK main features"""
    print("JAX-PK Simple Example")
    print("=" * 50)

    background = W0WaBackground(h=0.67, Omega_m=0.31, Omega_b=0.049, m_ncdm_tot=0.06, w0=-0.9, wa=-0.2, z_max=20.)
    perturbations = EisensteinHuPerturbations(background, k_min=1e-4, k_max=5., z_list=np.linspace(3., 0., 31))
    primordial = PowerLawPrimordial(A_s=2.1e-9, n_s=0.965)

    # ================================================================
    # 1. LINEAR AND HALOFIT SPECTRA
    # ================================================================
    print("\n1. LINEAR AND HALOFIT SPECTRA")
    print("-" * 40)
    cfg = FourierConfig()
    cfg.has_pk_cb = True
    cfg.z_max_pk = 2.
    cfg.method = 'halofit'
    cfg.has_pk_eq = True
    cfg.has_pk_numerical_nowiggle = True
    cfg.verbose = 1

    t0 = time.time()
    pk_engine = JAXPK(background, perturbations, primordial, cfg, PrecisionConfig(k_max_extra=50.))
    print(f"Initialization took {time.time() - t0:.2f} s")

    k = np.logspace(-3, 1, 5)
    pk_lin, _, pk_cb_lin, _ = pk_engine.pks_at_k_and_z(k, 0.5)
    pk_nl, _ = pk_engine.pk_at_k_and_z(k, 0.5, 'nonlinear')
    for ki, pl, pcb, pn in zip(k, pk_lin, pk_cb_lin, pk_nl):
        print(f"k={ki:8.4f}  P_lin={pl:12.4e}  P_cb={pcb:12.4e}  P_nl/P_lin={pn / pl:8.4f}")

    # ================================================================
    # 2. VARIANCE AND NONLINEAR SCALE
    # ================================================================
    print("\n2. VARIANCE AND NONLINEAR SCALE")
    print("-" * 40)
    print(f"sigma8 = {pk_engine.sigma8:.4f}, sigma8_cb = {pk_engine.sigma8_cb:.4f}")
    for z in (0., 1., 2.):
        k_nl, k_nl_cb = pk_engine.k_nl_at_z(z)
        sigma = pk_engine.sigmas_at_z(8. / background.h, z)
        sigma_disp = pk_engine.sigmas_at_z(8. / background.h, z, sigma_output='sigma_disp')
        print(f"z={z:.1f}: sigma(8 Mpc/h)={sigma:.4f}, sigma_disp={sigma_disp:.3f} Mpc, k_nl={k_nl:.4f}, k_nl_cb={k_nl_cb:.4f}")

    # ================================================================
    # 3. NO-WIGGLE SPECTRA
    # ================================================================
    print("\n3. NO-WIGGLE SPECTRA")
    print("-" * 40)
    k_bao = np.linspace(0.02, 0.3, 8)
    pk_cb_l, _ = pk_engine.pk_at_k_and_z(k_bao, 0., index_pk=pk_engine.indices.index_pk_cb)
    pk_nw, _ = pk_engine.pk_at_k_and_z(k_bao, 0., 'numerical_nowiggle', index_pk=pk_engine.indices.index_pk_cb)
    for ki, ratio in zip(k_bao, pk_cb_l / pk_nw):
        print(f"k={ki:6.3f}  P_L/P_nw={ratio:.4f}")

    pk_engine.free()


if __name__ == "__main__":
    main()
