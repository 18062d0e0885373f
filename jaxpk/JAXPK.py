import numpy as np
from scipy.interpolate import CubicSpline
from jax import config
config.update("jax_enable_x64", True)
from jaxpk.config import (FourierConfig, FourierSettings, PrecisionConfig, NonlinearMethod, PkOutput,
                          SigmaOutput, as_enum)
from jaxpk.errors import (ConfigurationError, RangeError, LifecycleError, NonlinearNotAvailableError)
from jaxpk.indices import build_indices
from jaxpk.grids import build_k_grid, build_tau_list
from jaxpk.extrapolation import PowerExtrapolator
from jaxpk.linear import assemble_linear
from jaxpk.nowiggle import build_nowiggle
from jaxpk.nonlinear import NonlinearDispatcher, PkEqAdapter, build_pk_eq, make_strategy
from jaxpk.sigmas import SigmaIntegrator
from jaxpk.jax_utils import interpolate_table


class JAXPK:
    def __init__(self, background, perturbations, primordial, settings=None, precision=None):
        """
        Compute and store matter power spectra P(k, z), their nonlinear
        corrections and smooth no-wiggle counterparts.

        All tables are built here; afterwards the instance only answers
        queries until :meth:`free` is called.

        Parameters
        ----------
        background : Background
            Flat background cosmology: conformal time, Hubble rate, density
            fractions, dark energy equation of state and growth factor.
        perturbations : Perturbations
            Native (k, tau) sampling and density transfer functions per
            initial condition for total matter ('m') and, if available,
            CDM+baryons ('cb').
        primordial : Primordial
            Dimensionless primordial spectra and cross-correlation
            coefficients of the initial conditions.
        settings : FourierConfig or FourierSettings, optional
            Requested outputs, nonlinear method and extrapolation policy.
            Defaults to the linear total-matter spectrum at z = 0.
        precision : PrecisionConfig, optional
            Numerical precision parameters.

        Notes
        -----
        Wavenumbers are in 1/Mpc, spectra in Mpc^3 and radii in Mpc.
        """
        if settings is None:
            settings = FourierConfig().build_and_validate()
        elif isinstance(settings, FourierConfig):
            settings = settings.build_and_validate()
        elif not isinstance(settings, FourierSettings):
            raise ConfigurationError('settings must be a FourierConfig or FourierSettings instance.')
        if precision is None:
            precision = PrecisionConfig()
        elif not isinstance(precision, PrecisionConfig):
            raise ConfigurationError('precision must be a PrecisionConfig instance.')

        self.settings = settings
        self.precision = precision
        self.background = background
        self.primordial = primordial
        verbose = settings.verbose

        if settings.has_pk_cb and not perturbations.has_cb:
            raise ConfigurationError('has_pk_cb requested but the perturbations provide no CDM+baryon transfer functions.')

        self.indices = build_indices(settings.has_pk_m, settings.has_pk_cb, perturbations.ic_size,
                                     primordial, perturbations.k)
        self.k_grid = build_k_grid(perturbations, settings.extrapolation_method, precision, verbose)
        self.tau_grid = build_tau_list(perturbations, background, settings.z_max_pk)
        self.extrapolator = PowerExtrapolator(settings.extrapolation_method, primordial, self.indices,
                                              settings.user_extrapolation)
        if verbose > 0:
            print(f'JAX-PK: Computing {self.indices.pk_size} spectra on {self.k_grid.k_size} wavenumbers '
                  f'and {self.tau_grid.ln_tau_size} times (z <= {settings.z_max_pk})')
            print(f'JAX-PK: high-k extrapolation: {self.extrapolator.describe()}')

        self.tables = [assemble_linear(index_pk, kind, perturbations, primordial, self.indices,
                                       self.k_grid, self.tau_grid, self.extrapolator)
                       for index_pk, kind in self.indices.types]

        self._sigmas = SigmaIntegrator(self.k_grid, self.tau_grid, precision, settings.extrapolation_method)
        self._sigma8 = [self._sigmas.sigma(table, 8. / background.h, self.tau_grid.ln_tau[-1])
                        for table in self.tables]
        if verbose > 0:
            for index_pk, kind in self.indices.types:
                print(f'JAX-PK: sigma8 ({kind.value}) = {self._sigma8[index_pk]:.6f} at z={self.tau_grid.z[-1]:.4g}')

        self.nowiggle = None
        if settings.has_pk_analytic_nowiggle:
            reference = self.tables[self.indices.index_pk_cluster]
            self.nowiggle = build_nowiggle(background, primordial, reference, self.k_grid.ln_k_extra,
                                           self.tau_grid.ln_tau, precision,
                                           numerical=settings.has_pk_numerical_nowiggle)

        self.pk_eq = None
        self.nonlinear = None
        self.strategy = make_strategy(settings, background, precision)
        if settings.method is not NonlinearMethod.NONE:
            adapter = None
            if settings.has_pk_eq:
                w = np.asarray(background.w_of_z(self.tau_grid.z))
                if np.ptp(np.append(w, background.w_of_z(settings.z_infinity))) > 0:
                    self.pk_eq = build_pk_eq(background, self.tau_grid.ln_tau, self.tau_grid.z, settings.z_infinity)
                    adapter = PkEqAdapter(self.pk_eq, background)
                elif verbose > 0:
                    print('JAX-PK: w is constant, pk_eq reduces to the true background')
            if verbose > 0:
                print(f'JAX-PK: nonlinear corrections with {self.strategy.name}'
                      + (' and the pk_eq equivalent models' if adapter is not None else ''))
            dispatcher = NonlinearDispatcher(self.strategy, background, pk_eq=adapter, verbose=verbose)
            ln_nowiggle_ratio = None
            if self.nowiggle is not None and self.nowiggle.ln_pk_l_nw_extra is not None:
                ln_nowiggle_ratio = (self.nowiggle.ln_pk_l_nw_extra
                                     - self.tables[self.nowiggle.pk_l_nw_index].ln_pk_extra)
            self.nonlinear = [dispatcher.run(table, self.k_grid, self.tau_grid, ln_nowiggle_ratio)
                              for table in self.tables]

        self.is_allocated = True

    ####################LIFECYCLE####################

    def free(self):
        """Release every stored table. Later queries raise LifecycleError."""
        if not self.is_allocated:
            raise LifecycleError('Fourier tables have already been freed.')
        self.tables = None
        self.nowiggle = None
        self.nonlinear = None
        self.pk_eq = None
        self._sigma8 = None
        self.k_grid = None
        self.tau_grid = None
        self.extrapolator = None
        self._sigmas = None
        self.strategy = None
        self.is_allocated = False

    def _check_allocated(self):
        if not self.is_allocated:
            raise LifecycleError('Fourier tables have been freed; create a new JAXPK instance.')

    ####################PROPERTIES####################

    @property
    def k(self):
        self._check_allocated()
        return self.k_grid.k

    @property
    def k_size(self):
        self._check_allocated()
        return self.k_grid.k_size

    @property
    def ln_tau(self):
        self._check_allocated()
        return self.tau_grid.ln_tau

    @property
    def index_tau_min_nl(self):
        self._check_allocated()
        if self.nonlinear is None:
            raise NonlinearNotAvailableError('No nonlinear method is active.')
        return self.nonlinear[self.indices.index_pk_total].index_tau_min_nl

    @property
    def sigma8(self):
        self._check_allocated()
        return self._sigma8[self.indices.index_pk_total]

    @property
    def sigma8_cb(self):
        self._check_allocated()
        if self.indices.index_pk_cb is None:
            return None
        return self._sigma8[self.indices.index_pk_cb]

    ####################HELPERS####################

    def _ln_tau_of_z(self, z):
        self._check_allocated()
        z = float(z)
        ln_tau_grid = self.tau_grid.ln_tau
        z_max = self.tau_grid.z[0]
        if z < 0:
            raise RangeError(f'Negative redshift z={z}.')
        if z > z_max * (1. + 1e-8) + 1e-10:
            raise RangeError(f'z={z} is beyond the tabulated range z <= {z_max:.6g}; increase z_max_pk.')
        ln_tau = float(np.log(self.background.tau_of_z(z)))
        if ln_tau_grid.size == 1:
            if abs(ln_tau - ln_tau_grid[0]) > 1e-6:
                raise RangeError(f'Spectra are only stored at z={z_max:.6g}, got z={z}.')
            return ln_tau_grid[0]
        if ln_tau > ln_tau_grid[-1] + 1e-8:
            raise RangeError(f'z={z} is later than the last stored time z={self.tau_grid.z[-1]:.6g}.')
        return float(np.clip(ln_tau, ln_tau_grid[0], ln_tau_grid[-1]))

    def _table(self, index_pk):
        if index_pk is None:
            index_pk = self.indices.index_pk_total
        self.indices.species(index_pk)
        return self.tables[index_pk]

    def _require_output(self, pk_output, index_pk):
        if pk_output is PkOutput.NONLINEAR and self.nonlinear is None:
            raise NonlinearNotAvailableError('Nonlinear spectra requested but the nonlinear method is none.')
        if pk_output is PkOutput.ANALYTIC_NOWIGGLE and self.nowiggle is None:
            raise ConfigurationError('Analytic no-wiggle spectrum requested but has_pk_analytic_nowiggle is off.')
        if pk_output is PkOutput.NUMERICAL_NOWIGGLE and (self.nowiggle is None or self.nowiggle.ln_pk_l_nw_extra is None):
            raise ConfigurationError('Numerical no-wiggle spectrum requested but has_pk_numerical_nowiggle is off.')
        if pk_output in (PkOutput.ANALYTIC_NOWIGGLE, PkOutput.NUMERICAL_NOWIGGLE):
            if index_pk is not None and index_pk != self.nowiggle.pk_l_nw_index:
                raise ConfigurationError(f'No-wiggle spectra are only computed for index_pk={self.nowiggle.pk_l_nw_index}.')

    def _ln_pk_ic_at(self, table, ln_tau):
        return interpolate_table(self.tau_grid.ln_tau, table.ln_pk_ic, table.ddln_pk_ic, ln_tau)

    def _ln_pk_at(self, table, ln_tau):
        return interpolate_table(self.tau_grid.ln_tau, table.ln_pk, table.ddln_pk, ln_tau)

    def _ln_pk_nowiggle_extra_at(self, pk_output, ln_tau):
        nowiggle = self.nowiggle
        if pk_output is PkOutput.NUMERICAL_NOWIGGLE:
            return interpolate_table(self.tau_grid.ln_tau, nowiggle.ln_pk_l_nw_extra, nowiggle.ddln_pk_l_nw_extra, ln_tau)
        # Analytic shape is stored at the latest time and rescaled by the growth of the largest scale
        reference = self.tables[nowiggle.pk_l_nw_index]
        shift = self._ln_pk_at(reference, ln_tau)[0] - reference.ln_pk[-1, 0]
        return nowiggle.ln_pk_l_an_extra + shift

    def _format_ic(self, ln_pk_ic, logarithmic):
        if ln_pk_ic is None or self.indices.ic_size == 1:
            return None
        out = np.array(ln_pk_ic, dtype=np.float64, copy=True)
        diag = self.indices.diagonal
        if logarithmic:
            return out
        pk_diag = np.exp(out[..., diag])
        for index, (i, j) in enumerate(self.indices.pairs):
            if i != j:
                out[..., index] = out[..., index] * np.sqrt(pk_diag[..., i] * pk_diag[..., j])
        out[..., diag] = pk_diag
        return out

    ####################QUERIES####################

    def pk_at_z(self, z, pk_output=PkOutput.LINEAR, index_pk=None, logarithmic=False):
        """
        Spectrum of one type on the native wavenumber grid at redshift z.

        Parameters
        ----------
        z : float
            Redshift within the tabulated range [0, z_max_pk].
        pk_output : PkOutput or str
            'linear', 'nonlinear', 'analytic_nowiggle' or 'numerical_nowiggle'.
        index_pk : int, optional
            Spectrum index; defaults to index_pk_total.
        logarithmic : bool
            Return ln P instead of P. Off-diagonal per-pair entries are then
            cross-correlation coefficients.

        Returns
        -------
        pk : ndarray
            Shape (k_size,).
        pk_ic : ndarray or None
            Per initial-condition-pair spectra, shape (k_size, ic_ic_size),
            for the linear output with more than one initial condition.
        """
        pk_output = as_enum(PkOutput, pk_output, 'pk_output')
        ln_tau = self._ln_tau_of_z(z)
        self._require_output(pk_output, index_pk)
        table = self._table(index_pk)
        ln_pk_ic = None
        if pk_output is PkOutput.LINEAR:
            ln_pk = self._ln_pk_at(table, ln_tau)
            ln_pk_ic = self._ln_pk_ic_at(table, ln_tau)
        elif pk_output is PkOutput.NONLINEAR:
            ln_pk = interpolate_table(self.tau_grid.ln_tau, table.ln_pk_nl, table.ddln_pk_nl, ln_tau)
        else:
            ln_pk = self._ln_pk_nowiggle_extra_at(pk_output, ln_tau)[:self.k_size]
        pk = ln_pk if logarithmic else np.exp(ln_pk)
        return pk, self._format_ic(ln_pk_ic, logarithmic)

    def pks_at_z(self, z, pk_output=PkOutput.LINEAR, logarithmic=False):
        """Total-matter and CDM+baryon spectra at z: (pk, pk_ic, pk_cb, pk_cb_ic)."""
        self._check_allocated()
        pk = pk_ic = pk_cb = pk_cb_ic = None
        if self.indices.index_pk_m is not None:
            pk, pk_ic = self.pk_at_z(z, pk_output, self.indices.index_pk_m, logarithmic)
        if self.indices.index_pk_cb is not None:
            pk_cb, pk_cb_ic = self.pk_at_z(z, pk_output, self.indices.index_pk_cb, logarithmic)
        return pk, pk_ic, pk_cb, pk_cb_ic

    def _linear_at_k(self, table, k, ln_tau):
        ln_k_grid = self.k_grid.ln_k
        ln_pk_ic_tau = self._ln_pk_ic_at(table, ln_tau)
        ln_pk_tau = self._ln_pk_at(table, ln_tau)
        ln_k = np.log(k)
        ln_pk = np.empty(k.size)
        ln_pk_ic = np.empty((k.size, self.indices.ic_ic_size))

        inside = (ln_k >= ln_k_grid[0]) & (ln_k <= ln_k_grid[-1])
        if np.any(inside):
            ln_pk[inside] = CubicSpline(ln_k_grid, ln_pk_tau, bc_type='natural')(ln_k[inside])
            ln_pk_ic[inside] = CubicSpline(ln_k_grid, ln_pk_ic_tau, axis=0, bc_type='natural')(ln_k[inside])
        above = ln_k > ln_k_grid[-1]
        if np.any(above):
            ln_pk_ic[above], ln_pk[above] = self.extrapolator.high_k(k[above], ln_k_grid[-2:], ln_pk_ic_tau[-2:])
        below = ln_k < ln_k_grid[0]
        if np.any(below):
            ln_pk_ic[below], ln_pk[below] = self.extrapolator.low_k(k[below], ln_k_grid[0], ln_pk_ic_tau[0])
        return ln_pk, ln_pk_ic

    def pk_at_k_and_z(self, k, z, pk_output=PkOutput.LINEAR, index_pk=None, logarithmic=False):
        """
        Spectrum of one type at arbitrary wavenumbers and redshift z.

        Inside the native grid the stored table is splined in ln k. Above
        k_max the linear spectrum follows the extrapolation policy and the
        nonlinear correction keeps its value at k_max; below k_min the
        transfer function is continued as k^2.

        Returns
        -------
        pk : float or ndarray
        pk_ic : ndarray or None
            Per-pair spectra for the linear output with several initial conditions.
        """
        self._check_allocated()
        pk_output = as_enum(PkOutput, pk_output, 'pk_output')
        scalar = np.ndim(k) == 0
        k = np.atleast_1d(np.asarray(k, dtype=np.float64))
        if np.any(k <= 0) or not np.all(np.isfinite(k)):
            raise RangeError('Wavenumbers must be positive and finite.')
        ln_tau = self._ln_tau_of_z(z)
        self._require_output(pk_output, index_pk)
        table = self._table(index_pk)

        ln_pk_ic = None
        if pk_output in (PkOutput.LINEAR, PkOutput.NONLINEAR):
            ln_pk, ln_pk_ic = self._linear_at_k(table, k, ln_tau)
            if pk_output is PkOutput.NONLINEAR:
                ln_pk_nl_tau = interpolate_table(self.tau_grid.ln_tau, table.ln_pk_nl, table.ddln_pk_nl, ln_tau)
                ln_corr2 = ln_pk_nl_tau - self._ln_pk_at(table, ln_tau)
                ln_k = np.clip(np.log(k), self.k_grid.ln_k[0], self.k_grid.ln_k[-1])
                ln_pk = ln_pk + CubicSpline(self.k_grid.ln_k, ln_corr2, bc_type='natural')(ln_k)
                ln_pk_ic = None
        else:
            ln_k_extra = self.k_grid.ln_k_extra
            ln_k = np.log(k)
            if np.any(ln_k < ln_k_extra[0] - 1e-12) or np.any(ln_k > ln_k_extra[-1] + 1e-12):
                raise RangeError(f'No-wiggle spectra are tabulated for {np.exp(ln_k_extra[0]):.4g} <= k <= '
                                 f'{np.exp(ln_k_extra[-1]):.4g} 1/Mpc.')
            ln_pk = CubicSpline(ln_k_extra, self._ln_pk_nowiggle_extra_at(pk_output, ln_tau),
                                bc_type='natural')(np.clip(ln_k, ln_k_extra[0], ln_k_extra[-1]))

        pk = ln_pk if logarithmic else np.exp(ln_pk)
        pk_ic = self._format_ic(ln_pk_ic, logarithmic)
        if scalar:
            return pk[0], (None if pk_ic is None else pk_ic[0])
        return pk, pk_ic

    def pks_at_k_and_z(self, k, z, pk_output=PkOutput.LINEAR, logarithmic=False):
        """Total-matter and CDM+baryon spectra at (k, z): (pk, pk_ic, pk_cb, pk_cb_ic)."""
        self._check_allocated()
        pk = pk_ic = pk_cb = pk_cb_ic = None
        if self.indices.index_pk_m is not None:
            pk, pk_ic = self.pk_at_k_and_z(k, z, pk_output, self.indices.index_pk_m, logarithmic)
        if self.indices.index_pk_cb is not None:
            pk_cb, pk_cb_ic = self.pk_at_k_and_z(k, z, pk_output, self.indices.index_pk_cb, logarithmic)
        return pk, pk_ic, pk_cb, pk_cb_ic

    def pks_at_kvec_and_zvec(self, kvec, zvec, pk_output=PkOutput.LINEAR):
        """
        Total spectra on a (z, k) grid.

        Returns
        -------
        pk : ndarray
            Shape (len(zvec), len(kvec)), total matter (or CDM+baryons when
            only that type is computed).
        pk_cb : ndarray or None
            Same shape, CDM+baryons if computed alongside total matter.
        """
        self._check_allocated()
        kvec = np.atleast_1d(np.asarray(kvec, dtype=np.float64))
        zvec = np.atleast_1d(np.asarray(zvec, dtype=np.float64))
        pk = np.empty((zvec.size, kvec.size))
        pk_cb = None
        has_both = self.indices.index_pk_m is not None and self.indices.index_pk_cb is not None
        if has_both:
            pk_cb = np.empty_like(pk)
        for index_z, z in enumerate(zvec):
            pk[index_z] = self.pk_at_k_and_z(kvec, z, pk_output, self.indices.index_pk_total)[0]
            if has_both:
                pk_cb[index_z] = self.pk_at_k_and_z(kvec, z, pk_output, self.indices.index_pk_cb)[0]
        return pk, pk_cb

    def sigmas_at_z(self, R, z, index_pk=None, sigma_output=SigmaOutput.SIGMA):
        """
        Top-hat variance statistic of the linear spectrum.

        Parameters
        ----------
        R : float
            Radius in Mpc.
        z : float
            Redshift within the tabulated range.
        index_pk : int, optional
            Spectrum index; defaults to index_pk_total.
        sigma_output : SigmaOutput or str
            'sigma' for sigma(R), 'sigma_prime' for d sigma / dR and
            'sigma_disp' for the displacement dispersion.
        """
        sigma_output = as_enum(SigmaOutput, sigma_output, 'sigma_output')
        ln_tau = self._ln_tau_of_z(z)
        return self._sigmas.sigma(self._table(index_pk), R, ln_tau, sigma_output)

    def sigma_at_z(self, R, z, index_pk=None, k_per_decade=None):
        """sigma(R) at z with an optional custom quadrature density."""
        ln_tau = self._ln_tau_of_z(z)
        return self._sigmas.sigma(self._table(index_pk), R, ln_tau, SigmaOutput.SIGMA, k_per_decade)

    def pk_tilt_at_k_and_z(self, k, z, pk_output=PkOutput.LINEAR, index_pk=None):
        """Logarithmic slope d ln P / d ln k by centered finite differences."""
        self._check_allocated()
        dlnk = self.precision.tilt_dlnk
        k = np.asarray(k, dtype=np.float64)
        ln_pk_plus = self.pk_at_k_and_z(k * np.exp(dlnk), z, pk_output, index_pk, logarithmic=True)[0]
        ln_pk_minus = self.pk_at_k_and_z(k * np.exp(-dlnk), z, pk_output, index_pk, logarithmic=True)[0]
        return (ln_pk_plus - ln_pk_minus) / (2. * dlnk)

    def k_nl_at_z(self, z):
        """
        Nonlinear wavenumber at z.

        Returns
        -------
        k_nl : float
            For total matter, or CDM+baryons if it is the only type.
        k_nl_cb : float or None
            For CDM+baryons when both types are computed.
        """
        self._check_allocated()
        if self.nonlinear is None:
            raise NonlinearNotAvailableError('k_nl is only defined when a nonlinear method is active.')
        ln_tau = self._ln_tau_of_z(z)
        ln_tau_grid = self.tau_grid.ln_tau
        k_nl = float(np.interp(ln_tau, ln_tau_grid, self.nonlinear[self.indices.index_pk_total].k_nl))
        k_nl_cb = None
        if self.indices.index_pk_m is not None and self.indices.index_pk_cb is not None:
            k_nl_cb = float(np.interp(ln_tau, ln_tau_grid, self.nonlinear[self.indices.index_pk_cb].k_nl))
        return k_nl, k_nl_cb
