# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Fast fitting of source normalizations in a binned Poisson
likelihood.

The cache holds the observed counts and the model image of every
source in the ROI.  Fits are restricted to the normalizations of the
sources (scale factors relative to the model at its reference value)
and are performed with Newton's method using the analytic gradient and
Hessian of the log-likelihood.
"""
import copy
import logging
import numpy as np
from fitscan import defaults
from fitscan import utils
from fitscan.sparse import SparseModel
from fitscan.prior import MultivariatePrior
from fitscan.exceptions import ConvergenceFailure

log = logging.getLogger(__name__)

FIT_CONVERGED = 0
FIT_DEGENERATE = -2
FIT_MAX_ITER = 1
FIT_NO_FREE_PARS = 2
FIT_INVALID_START = 3

# Maximum number of times an undamped Newton step is halved
MAX_STEP_HALVINGS = 30


class FitState(object):
    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    FITTING = 'fitting'
    CONVERGED = 'converged'
    FAILED = 'failed'


def poisson_log_like(counts, model):
    """Compute the Poisson log-likelihood summed over all bins.  Bins
    with zero counts only contribute through the model."""
    m = counts > 0
    with np.errstate(divide='ignore', invalid='ignore'):
        loglike = np.sum(counts[m] * np.log(model[m]))
    loglike -= np.sum(model)
    if np.isnan(loglike):
        return -np.inf
    return loglike


def solve_hessian(hess, grad):
    """Solve ``hess * x = grad``.  If the matrix is singular the
    minimum-norm solution from the pseudo-inverse is returned.

    Returns
    -------
    x : `~numpy.ndarray`
        Solution vector.

    singular : bool
        True if the pseudo-inverse was used.  Also set when the input
        is not finite, in which case the solution is nan.
    """
    n = len(grad)
    if n == 0:
        return np.zeros(0), False

    if not (np.all(np.isfinite(hess)) and np.all(np.isfinite(grad))):
        return np.full(n, np.nan), True

    if np.linalg.matrix_rank(hess) < n:
        return np.dot(np.linalg.pinv(hess), grad), True

    try:
        return np.linalg.solve(hess, grad), False
    except np.linalg.LinAlgError:
        return np.dot(np.linalg.pinv(hess), grad), True


def invert_hessian(hess):
    """Invert a Hessian matrix, falling back to the pseudo-inverse when
    it is singular.  Returns the inverse and a flag set when the
    pseudo-inverse was used or the matrix is not finite."""
    n = hess.shape[0]
    if n == 0:
        return np.zeros((0, 0)), False

    if not np.all(np.isfinite(hess)):
        return np.full((n, n), np.nan), True

    if np.linalg.matrix_rank(hess) < n:
        return np.linalg.pinv(hess), True

    try:
        cov = np.linalg.inv(hess)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(hess), True

    if not np.all(np.isfinite(cov)):
        return np.linalg.pinv(hess), True

    return cov, False


class _FitProblem(object):
    """Arrays entering the likelihood over the active bin range.  In
    reduced mode only the bins with counts are kept explicitly and
    the remaining bins enter through the sums of the models over
    them."""

    def __init__(self, data, comps, fixed, comp_zsum, fixed_zsum):
        self.data = data
        self.comps = comps
        self.fixed = fixed
        self.comp_zsum = comp_zsum
        self.fixed_zsum = fixed_zsum

    def model(self, pars):
        return np.dot(pars, self.comps) + self.fixed

    def loglike(self, pars):
        loglike = poisson_log_like(self.data, self.model(pars))
        return loglike - np.dot(pars, self.comp_zsum) - self.fixed_zsum

    def derivs(self, pars):
        """Return the log-likelihood, its gradient, and the curvature
        matrix (the negative of its Hessian)."""

        model = self.model(pars)
        m = self.data > 0
        with np.errstate(divide='ignore', invalid='ignore'):
            w = np.zeros_like(model)
            w[m] = self.data[m] / model[m]
            w2 = np.zeros_like(model)
            w2[m] = w[m] / model[m]

        loglike = poisson_log_like(self.data, model)
        loglike -= np.dot(pars, self.comp_zsum) + self.fixed_zsum
        grad = np.dot(self.comps, w - 1.0) - self.comp_zsum
        hess = np.dot(self.comps * w2, self.comps.T)
        return loglike, grad, hess


class FitCache(object):
    """Per-ROI engine for fits of source normalizations.

    Parameters
    ----------
    tol : float
        Convergence criterion on the estimated distance to the maximum
        of the log-likelihood.

    max_iter : int
        Maximum number of Newton iterations.

    tol_type : int
        Absolute (0) or relative (1) convergence criterion.  In the
        relative case the threshold is ``tol * |logL|``.

    init_lambda : float
        Initial value of the damping parameter used when computing the
        Newton step.  A value of zero disables damping.

    use_reduced : bool
        Evaluate the likelihood using only the bins with non-zero
        counts.
    """

    def __init__(self, tol=1E-3, max_iter=30, tol_type=0, init_lambda=0.0,
                 use_reduced=False):

        self._tol = tol
        self._max_iter = max_iter
        self._tol_type = tol_type
        self._init_lambda = init_lambda
        self._use_reduced = use_reduced

        self._state = FitState.UNINITIALIZED
        self._counts = None
        self._models = None
        self._names = []
        self._ref_values = None
        self._test_source_name = None
        self._npix = 0
        self._nebins = 0
        self._loglike_ref = None
        self._reset_current()

    def _reset_current(self):

        self._free = None
        self._scales = None
        self._free_idx = np.zeros(0, dtype=int)
        self._include_test = False
        self._test_norm = 0.0
        self._pars = np.zeros(0)
        self._fixed_sum = None
        self._fixed_zsum = None
        self._test_model = None
        self._test_zsum = None
        self._ebin_range = (0, self._nebins)
        self._prior_bkg = None
        self._prior_test = None
        self._problem = None
        self._clear_fit()

    def _clear_fit(self):
        self._best_grad = None
        self._best_cov = None
        self._best_loglike = None
        self._edm = None
        self._niter = 0
        self._degenerate = False
        self._fit_status = None

    @classmethod
    def create_from_like(cls, like, test_source_name='fitscan_testsource',
                         **kwargs):
        """Create a cache from the counts and source model images of a
        binned-likelihood provider.

        Parameters
        ----------
        like : `~fitscan.likelihood.BinnedLikelihood`
            Binned-likelihood provider.

        test_source_name : str
            Name of the test source.

        kwargs : dict
            Options passed to the constructor.
        """

        names = like.source_names()
        models = [np.ravel(like.source_map(name)) for name in names]
        ref_values = [like.norm_value(name) for name in names]
        free = [like.is_free(name) for name in names]

        o = cls(**kwargs)
        o.initialize(np.ravel(like.counts), models, test_source_name,
                     nebins=like.nebins, names=names, ref_values=ref_values)
        o.refactor_model(free, np.ones(len(names)), False)
        return o

    def initialize(self, counts, models, test_source_name='fitscan_testsource',
                   nebins=1, names=None, ref_values=None):
        """Capture the counts and the background model components.

        Parameters
        ----------
        counts : `~numpy.ndarray`
            Observed counts with index ``ebin * npix + pix``.

        models : list
            Model vector of each background component as a dense array
            or `~fitscan.sparse.SparseModel`.

        test_source_name : str
            Name of the test source.

        nebins : int
            Number of energy bins.

        names : list
            Names of the background components.

        ref_values : `~numpy.ndarray`
            Value of the normalization parameter of each component at
            which its model vector was evaluated.
        """

        counts = np.asarray(counts, dtype=float).ravel()
        if len(counts) % nebins != 0:
            raise ValueError('Counts vector of length %i cannot be split '
                             'into %i energy bins.' % (len(counts), nebins))

        mvecs = []
        for i, m in enumerate(models):
            if isinstance(m, SparseModel):
                m = m.to_dense(len(counts))
            m = np.asarray(m, dtype=float).ravel()
            if len(m) != len(counts):
                raise ValueError('Model %i has length %i, expected %i.'
                                 % (i, len(m), len(counts)))
            mvecs += [m]

        if names is None:
            names = ['src%i' % i for i in range(len(mvecs))]
        if len(names) != len(mvecs):
            raise ValueError('Number of names does not match number of models.')

        if ref_values is None:
            ref_values = np.ones(len(mvecs))

        # Baseline arrays are shared read-only between clones
        self._counts = counts.view()
        self._counts.flags.writeable = False
        self._models = np.array(mvecs).reshape((len(mvecs), len(counts)))
        self._models.flags.writeable = False
        self._names = list(names)
        self._ref_values = np.array(ref_values, dtype=float)
        self._test_source_name = test_source_name
        self._nebins = int(nebins)
        self._npix = len(counts) // self._nebins
        self._counts_sparse = SparseModel.from_dense(counts)
        self._zero_sums = self._ebin_zero_sums(self._models)
        self._zero_sums.flags.writeable = False
        self._loglike_ref = poisson_log_like(counts, np.sum(self._models,
                                                            axis=0))

        self._reset_current()
        self._test_model = np.zeros(len(counts))
        self._test_zsum = np.zeros(self._nebins)
        self.refactor_model(np.ones(self.n_bkg_model, dtype=bool),
                            np.ones(self.n_bkg_model), False)

        log.debug('Initialized fit cache with %i components, '
                  '%i energy bins, %i pixels, loglike_ref = %.3f',
                  self.n_bkg_model, self._nebins, self._npix,
                  self._loglike_ref)

    def clone(self):
        """Create a copy with independent fit state that shares the
        baseline counts and model arrays of this cache."""
        o = copy.copy(self)
        for k in ['_free', '_scales', '_free_idx', '_pars', '_fixed_sum',
                  '_fixed_zsum', '_test_model', '_test_zsum']:
            v = getattr(self, k)
            setattr(o, k, None if v is None else np.array(v))
        o._prior_bkg = copy.deepcopy(self._prior_bkg)
        o._prior_test = copy.deepcopy(self._prior_test)
        o._problem = None
        for k in ['_best_grad', '_best_cov']:
            v = getattr(self, k)
            setattr(o, k, None if v is None else np.array(v))
        return o

    def _ebin_zero_sums(self, models):
        """Sum of each model vector over the zero-count bins of each
        energy bin."""
        models = np.atleast_2d(models)
        zmask = (self._counts == 0).reshape((self._nebins, self._npix))
        m = models.reshape((models.shape[0], self._nebins, self._npix))
        return np.sum(m * zmask[np.newaxis, ...], axis=2)

    def _check_init(self):
        if self._state == FitState.UNINITIALIZED:
            raise RuntimeError('Fit cache has not been initialized.')

    @property
    def state(self):
        return self._state

    @property
    def npix(self):
        return self._npix

    @property
    def nebins(self):
        return self._nebins

    @property
    def n_bkg_model(self):
        return 0 if self._models is None else self._models.shape[0]

    @property
    def names(self):
        return self._names

    @property
    def ref_values(self):
        return self._ref_values

    @property
    def test_source_name(self):
        return self._test_source_name

    @property
    def counts(self):
        return self._counts

    @property
    def models(self):
        return self._models

    @property
    def test_model(self):
        return self._test_model

    @property
    def loglike_ref(self):
        return self._loglike_ref

    @property
    def n_free_current(self):
        return len(self._pars)

    @property
    def free_indices(self):
        """Indices of the background components that are free in the
        current fit."""
        return self._free_idx

    @property
    def include_test(self):
        return self._include_test

    @property
    def test_source_index(self):
        """Index of the test source normalization in the current
        parameter vector or -1 if it is not in the fit."""
        return len(self._free_idx) if self._include_test else -1

    @property
    def current_pars(self):
        return np.array(self._pars)

    @property
    def current_cov(self):
        return None if self._best_cov is None else np.array(self._best_cov)

    @property
    def current_loglike(self):
        return self._best_loglike

    @property
    def current_edm(self):
        return self._edm

    @property
    def current_energy_bin(self):
        """Index of the active energy bin or -1 if all bins are
        active."""
        imin, imax = self._ebin_range
        if imin == 0 and imax == self._nebins:
            return -1
        elif imax - imin == 1:
            return imin
        return imin, imax

    @property
    def current_model(self):
        """Predicted counts at the current parameters over the active
        bin range."""
        self._check_init()
        lo, hi = self._bin_range()
        return np.dot(self._pars, self._comp_matrix(lo, hi)) + \
            self._fixed_sum[lo:hi]

    @property
    def degenerate(self):
        return self._degenerate

    @property
    def prior_bkg(self):
        return self._prior_bkg

    @property
    def prior_test(self):
        return self._prior_test

    def get_par_scales(self):
        """Return the scale factors of all background components and
        of the test source."""
        return np.array(self._scales), self._test_norm

    def get_pars(self):
        """Return the current parameters, their errors and their
        covariance matrix."""
        pars = np.array(self._pars)
        npar = len(pars)
        if self._best_cov is None:
            cov = np.ones((npar, npar)) * np.nan
        else:
            cov = np.array(self._best_cov)
        with np.errstate(invalid='ignore'):
            err = np.sqrt(np.diag(cov))
        return pars, err, cov

    def refactor_model(self, free_mask, scales, include_test, init_norm=None):
        """Set the fit configuration.

        Parameters
        ----------
        free_mask : `~numpy.ndarray`
            Boolean array flagging the background components whose
            normalization is free.

        scales : `~numpy.ndarray`
            Current scale factor of every background component.  Fixed
            components are summed at these scales and free components
            start from them.

        include_test : bool
            Include the test source in the fit.

        init_norm : float
            Starting normalization of the test source.  Defaults to
            its current value.
        """
        self._check_loaded()

        free_mask = np.array(free_mask, dtype=bool, ndmin=1)
        scales = np.array(scales, dtype=float, ndmin=1)
        if len(free_mask) != self.n_bkg_model or len(scales) != self.n_bkg_model:
            raise ValueError('Expected %i background components.'
                             % self.n_bkg_model)

        self._free = free_mask
        self._scales = scales
        self._free_idx = np.flatnonzero(free_mask)
        fixed = ~free_mask
        self._fixed_sum = np.dot(scales[fixed], self._models[fixed])
        self._fixed_zsum = np.dot(scales[fixed], self._zero_sums[fixed])

        if init_norm is not None:
            self._test_norm = float(init_norm)
        self._include_test = bool(include_test)
        self._set_pars_from_scales()
        self._state = FitState.READY

    def _check_loaded(self):
        if self._models is None:
            raise RuntimeError('Fit cache has not been initialized.')

    def _set_pars_from_scales(self):
        pars = list(self._scales[self._free_idx])
        if self._include_test:
            pars += [self._test_norm]
        self._pars = np.array(pars, dtype=float)
        self._problem = None
        self._clear_fit()

    def add_test_source_to_current(self, init_norm=0.0):
        """Add the test source to the current fit keeping the
        configuration of the background components."""
        self._check_init()
        self._test_norm = float(init_norm)
        self._include_test = True
        self._set_pars_from_scales()
        self._state = FitState.READY

    def remove_test_source_from_current(self):
        self._check_init()
        self._include_test = False
        self._set_pars_from_scales()
        self._state = FitState.READY

    def set_test_source_model(self, model):
        """Replace the model vector of the test source."""
        self._check_init()
        if isinstance(model, SparseModel):
            model = model.to_dense(len(self._counts))
        model = np.asarray(model, dtype=float).ravel()
        if len(model) != len(self._counts):
            raise ValueError('Test source model has length %i, expected %i.'
                             % (len(model), len(self._counts)))
        self._test_model = np.array(model)
        self._test_zsum = self._ebin_zero_sums(self._test_model)[0]
        self._problem = None
        self._clear_fit()
        if self._state != FitState.UNINITIALIZED:
            self._state = FitState.READY

    def shift_test_source_model(self, cache, skydir):
        """Install the test source model translated to ``skydir``.

        Parameters
        ----------
        cache : `~fitscan.srcmap_cache.TestSourceModelCache`
            Cache holding the reference image of the test source.

        skydir : `~astropy.coordinates.SkyCoord`
            New direction of the test source.
        """
        self.set_test_source_model(cache.translate(skydir))

    def set_energy_bin(self, ebin):
        """Restrict subsequent fits to energy bin ``ebin``.  All energy
        bins are used when ``ebin`` is -1."""
        self._check_init()
        if ebin == -1:
            self.set_energy_bins(0, self._nebins)
        elif ebin < 0 or ebin >= self._nebins:
            raise IndexError('Energy bin %s out of range [0, %i).'
                             % (ebin, self._nebins))
        else:
            self.set_energy_bins(ebin, ebin + 1)

    def set_energy_bins(self, imin, imax):
        """Restrict subsequent fits to the energy bins in [imin, imax)."""
        self._check_init()
        if imin < 0 or imax > self._nebins or imin >= imax:
            raise IndexError('Invalid energy bin range [%s, %s) for %i bins.'
                             % (imin, imax, self._nebins))
        self._ebin_range = (int(imin), int(imax))
        self._problem = None
        self._clear_fit()
        self._state = FitState.READY

    def _bin_range(self):
        imin, imax = self._ebin_range
        return imin * self._npix, imax * self._npix

    def _comp_matrix(self, lo, hi):
        comps = self._models[self._free_idx, lo:hi]
        if self._include_test:
            comps = np.vstack((comps, self._test_model[np.newaxis, lo:hi]))
        return comps

    def _comp_zsum(self):
        imin, imax = self._ebin_range
        zsum = np.sum(self._zero_sums[self._free_idx, imin:imax], axis=1)
        if self._include_test:
            zsum = np.concatenate((zsum, [np.sum(self._test_zsum[imin:imax])]))
        return zsum

    def _get_problem(self):

        if self._problem is not None:
            return self._problem

        lo, hi = self._bin_range()
        comps = self._comp_matrix(lo, hi)

        if self._use_reduced:
            nz = self._counts_sparse.restrict(lo, hi)
            idx = nz.indices
            imin, imax = self._ebin_range
            self._problem = _FitProblem(nz.values, comps[:, idx - lo],
                                        self._fixed_sum[idx],
                                        self._comp_zsum(),
                                        np.sum(self._fixed_zsum[imin:imax]))
        else:
            self._problem = _FitProblem(np.asarray(self._counts[lo:hi]), comps,
                                        self._fixed_sum[lo:hi],
                                        np.zeros(comps.shape[0]), 0.0)

        return self._problem

    def _active_prior(self):
        """Return the prior matching the current configuration."""

        npar = self.n_free_current
        if self._include_test:
            if self._prior_test is not None:
                prior = self._prior_test
            elif self._prior_bkg is not None:
                prior = self._extend_prior(self._prior_bkg)
            else:
                prior = None
        else:
            prior = self._prior_bkg

        if prior is not None and prior.npar != npar:
            raise ValueError('Prior defined for %i parameters but the '
                             'current fit has %i.' % (prior.npar, npar))

        return prior

    def _extend_prior(self, prior):
        """Add an unconstrained entry for the test source to a prior
        defined on the background parameters."""
        n = prior.npar
        vals = np.concatenate((prior.central_vals, [0.0]))
        cov = np.zeros((n + 1, n + 1))
        cov[:n, :n] = prior.covariance
        cov[n, n] = 1.0
        mask = np.concatenate((prior.mask, [False]))
        return MultivariatePrior(vals, cov, mask, include_test_source=True)

    def _objective(self, pars, prior=None, derivs=False):

        problem = self._get_problem()

        if not derivs:
            loglike = problem.loglike(pars)
            if prior is not None:
                loglike -= prior.neg_log_likelihood(pars)
            return loglike

        loglike, grad, hess = problem.derivs(pars)
        if prior is not None:
            loglike -= prior.neg_log_likelihood(pars)
            grad = grad - prior.gradient(pars)
            hess = hess + prior.hessian()

        return loglike, grad, hess

    def loglike_current(self, use_prior=False):
        """Evaluate the log-likelihood at the current parameters over
        the active bin range without fitting."""
        self._check_init()
        prior = self._active_prior() if use_prior else None
        return self._objective(self._pars, prior)

    def build_priors_from_external(self, central_vals, covariance, mask=None):
        """Install a Gaussian prior on the parameters of the current
        fit configuration.  The prior replaces the background-only or
        the background+test prior depending on whether the test source
        is part of the current fit.

        Parameters
        ----------
        central_vals : `~numpy.ndarray`
            Central values of the current parameters.

        covariance : `~numpy.ndarray`
            Covariance matrix of the current parameters.

        mask : `~numpy.ndarray`
            Boolean array selecting the constrained parameters.
        """
        self._check_init()
        central_vals = np.array(central_vals, dtype=float, ndmin=1)
        if len(central_vals) != self.n_free_current:
            raise ValueError('Expected %i central values, got %i.'
                             % (self.n_free_current, len(central_vals)))

        prior = MultivariatePrior(central_vals, covariance, mask,
                                  include_test_source=self._include_test)
        if self._include_test:
            self._prior_test = prior
        else:
            self._prior_bkg = prior
        return prior

    def build_priors_from_current(self, mask=None, cov_scale=1.0):
        """Install a prior centered on the current best-fit parameters
        with covariance equal to the fit covariance times
        ``cov_scale``."""
        self._check_init()
        if self._best_cov is None:
            raise RuntimeError('No fit covariance available to build priors.')
        return self.build_priors_from_external(self._pars,
                                               self._best_cov * cov_scale,
                                               mask)

    def clear_priors(self, bkg=True, test=True):
        if bkg:
            self._prior_bkg = None
        if test:
            self._prior_test = None

    def eval_loglike(self, pars, use_prior=False, derivs=False):
        """Evaluate the log-likelihood of the current configuration at
        ``pars``.  With ``derivs`` the gradient and the curvature
        matrix are returned as well."""
        self._check_init()
        pars = np.array(pars, dtype=float, ndmin=1)
        if len(pars) != self.n_free_current:
            raise IndexError('Expected %i parameters, got %i.'
                             % (self.n_free_current, len(pars)))
        prior = self._active_prior() if use_prior else None
        return self._objective(pars, prior, derivs)

    def _newton_step(self, pars, grad, hess, fit_idx, lam):
        """Compute the Newton step on the parameters in ``fit_idx``
        such that no parameter becomes negative."""

        npar = len(pars)
        delta = np.zeros(npar)
        active = np.zeros(npar, dtype=bool)
        active[fit_idx] = True

        # Without curvature the objective is linear in the parameter
        flat = active & (np.diag(hess) <= 0)
        lin = flat & (grad < 0)
        delta[lin] = -pars[lin]
        active &= ~flat

        singular = False
        while np.any(active):
            sel = np.flatnonzero(active)
            h = hess[np.ix_(sel, sel)]
            if lam > 0:
                h = h + lam * np.diag(np.diag(h))
            dsel, singular = solve_hessian(h, grad[sel])

            # Parameters at zero pushed further down stay there
            pinned = (pars[sel] <= 0) & (dsel < 0)
            if not np.any(pinned):
                delta[sel] = dsel
                break
            active[sel[pinned]] = False

        m = pars + delta < 0
        delta[m] = -pars[m]
        return delta, singular

    def _newton(self, pars, fit_idx, prior, max_iter, tol, tol_type, init_lambda):

        pars = np.array(pars, dtype=float)
        lam = init_lambda
        loglike, grad, hess = self._objective(pars, prior, derivs=True)
        edm = np.inf
        converged = False
        niter = 0

        while niter < max_iter:

            niter += 1
            delta, _ = self._newton_step(pars, grad, hess, fit_idx, lam)
            if not np.all(np.isfinite(delta)):
                log.debug('Newton step is not finite.')
                break
            edm = np.dot(delta, grad)

            pars_new = pars + delta
            loglike_new, grad_new, hess_new = self._objective(pars_new, prior,
                                                              derivs=True)

            thresh = tol if tol_type == 0 else tol * abs(loglike)

            if lam == 0 and not loglike_new >= loglike:
                if edm < thresh:
                    converged = True
                    break
                step = self._halve_step(pars, delta, loglike, prior)
                if step is None:
                    log.debug('No improving step found along the Newton '
                              'direction.')
                    break
                pars_new, loglike_new, grad_new, hess_new = step

            if lam > 0 and not loglike_new >= loglike:
                lam *= 10.
                if edm < thresh:
                    converged = True
                    break
                continue
            elif lam > 0:
                lam /= 10.

            pars, loglike, grad, hess = pars_new, loglike_new, grad_new, hess_new

            if edm < thresh:
                converged = True
                break

        return pars, loglike, grad, hess, edm, niter, converged

    def _halve_step(self, pars, delta, loglike, prior):
        """Halve ``delta`` until the objective is finite and no worse
        than ``loglike``.  Returns the new parameters with the objective
        and its derivatives, or None if no such step was found."""

        for _ in range(MAX_STEP_HALVINGS):
            delta = 0.5 * delta
            pars_new = pars + delta
            loglike_new, grad_new, hess_new = self._objective(pars_new, prior,
                                                              derivs=True)
            if loglike_new >= loglike:
                return pars_new, loglike_new, grad_new, hess_new
        return None

    def fit(self, use_prior=False, max_iter=None, tol=None, tol_type=None,
            raise_on_failure=False):
        """Fit the free parameters of the current configuration with
        Newton's method.

        Parameters
        ----------
        use_prior : bool
            Add the prior matching the current configuration to the
            objective.

        max_iter : int
            Maximum number of iterations.  Defaults to the value given
            at construction.

        tol : float
            Convergence threshold on the estimated distance to the
            maximum.

        tol_type : int
            Absolute (0) or relative (1) threshold.

        raise_on_failure : bool
            Raise `~fitscan.exceptions.ConvergenceFailure` when the
            iterations are exhausted.

        Returns
        -------
        fit_output : dict
            Dictionary with the fit status, log-likelihood, estimated
            distance to the maximum, number of iterations, fitted
            parameters and their errors and covariance.
        """
        self._check_init()

        max_iter = self._max_iter if max_iter is None else max_iter
        tol = self._tol if tol is None else tol
        tol_type = self._tol_type if tol_type is None else tol_type
        prior = self._active_prior() if use_prior else None

        o = defaults.make_default_dict(defaults.fit_output)
        npar = self.n_free_current
        o['values'] = np.array(self._pars)
        o['errors'] = np.ones(npar) * np.nan
        o['covariance'] = np.ones((npar, npar)) * np.nan
        o['correlation'] = np.ones((npar, npar)) * np.nan
        o['degenerate'] = False
        o['niter'] = 0
        o['edm'] = 0.0

        self._clear_fit()

        if npar == 0:
            o['loglike'] = self._objective(self._pars, prior)
            o['fit_status'] = FIT_NO_FREE_PARS
            o['fit_success'] = False
            self._best_loglike = o['loglike']
            self._fit_status = FIT_NO_FREE_PARS
            self._state = FitState.FAILED
            o['state'] = self._state
            return o

        self._state = FitState.FITTING
        pars = np.array(self._pars)
        fit_idx = np.arange(npar)

        if not np.isfinite(self._objective(pars, prior)):
            pars[pars <= 0] = 1.0

        if not np.isfinite(self._objective(pars, prior)):
            log.warning('Log-likelihood is not finite at the starting point.')
            o['loglike'] = -np.inf
            o['fit_status'] = FIT_INVALID_START
            o['fit_success'] = False
            self._best_loglike = -np.inf
            self._fit_status = FIT_INVALID_START
            self._state = FitState.FAILED
            o['state'] = self._state
            return o

        pars, loglike, grad, hess, edm, niter, converged = \
            self._newton(pars, fit_idx, prior, max_iter, tol, tol_type,
                         self._init_lambda)

        cov, degenerate = invert_hessian(hess)

        self._pars = pars
        self._best_loglike = loglike
        self._best_grad = grad
        self._best_cov = cov
        self._edm = edm
        self._niter = niter
        self._degenerate = degenerate
        self._update_scales()

        if not converged:
            fit_status = FIT_MAX_ITER
        elif degenerate:
            fit_status = FIT_DEGENERATE
        else:
            fit_status = FIT_CONVERGED

        self._fit_status = fit_status
        self._state = FitState.CONVERGED if converged else FitState.FAILED

        with np.errstate(invalid='ignore'):
            errors = np.sqrt(np.diag(cov))

        o['fit_status'] = fit_status
        o['fit_success'] = fit_status <= 0
        o['degenerate'] = degenerate
        o['loglike'] = loglike
        o['edm'] = edm
        o['niter'] = niter
        o['values'] = np.array(pars)
        o['errors'] = errors
        o['covariance'] = np.array(cov)
        o['correlation'] = utils.cov_to_correlation(cov)
        o['state'] = self._state

        log.debug('Fit finished: status = %i, loglike = %.4f, edm = %.3g, '
                  'niter = %i', fit_status, loglike, edm, niter)

        if not converged:
            msg = ('Newton fit did not converge after %i iterations '
                   '(edm = %g).' % (niter, edm))
            if raise_on_failure:
                raise ConvergenceFailure(msg, o)
            log.debug(msg)

        return o

    def _update_scales(self):
        nfree = len(self._free_idx)
        self._scales[self._free_idx] = self._pars[:nfree]
        if self._include_test:
            self._test_norm = self._pars[nfree]

    def set_current_pars(self, pars):
        """Set the current parameters without fitting."""
        pars = np.array(pars, dtype=float, ndmin=1)
        if len(pars) != self.n_free_current:
            raise IndexError('Expected %i parameters, got %i.'
                             % (self.n_free_current, len(pars)))
        self._pars = pars
        self._update_scales()
        self._clear_fit()
        self._state = FitState.READY

    def _best_fit_pars(self):
        if self._best_grad is None:
            raise RuntimeError('No fit has been performed with the current '
                               'configuration.')
        return np.array(self._pars)

    def scan_normalization(self, nnorm, norm_sigma, pos_err, neg_err,
                           profile=False, use_prior=False):
        """Scan the log-likelihood versus the normalization of the test
        source about its best-fit value.

        Parameters
        ----------
        nnorm : int
            Number of scan points.

        norm_sigma : float
            Number of errors spanned on either side of the best fit.

        pos_err : float
            Positive error on the normalization.

        neg_err : float
            Negative error on the normalization.

        profile : bool
            Refit the other free parameters at every scan point.  By
            default they are held at their best-fit values.

        use_prior : bool
            Include the active prior in the scanned objective.

        Returns
        -------
        norms : `~numpy.ndarray`
            Normalization values of the scan.  The best-fit value is
            one of the points when ``nnorm`` is at least 3.

        loglikes : `~numpy.ndarray`
            Log-likelihood at each scan point.
        """
        if not self._include_test:
            raise RuntimeError('Test source is not part of the current fit.')

        if not (np.isfinite(pos_err) and np.isfinite(neg_err)):
            raise ValueError('Normalization errors must be finite.')

        best_pars = self._best_fit_pars()
        itest = self.test_source_index
        best = best_pars[itest]

        lo = max(best - norm_sigma * neg_err, 0.0)
        hi = best + norm_sigma * pos_err
        norms = make_norm_scan(lo, best, hi, nnorm)

        loglikes = np.zeros(len(norms))
        for i, norm in enumerate(norms):
            loglikes[i] = self.profile_loglike(norm, profile=profile,
                                               use_prior=use_prior)

        return norms, loglikes

    def profile_loglike(self, norm, profile=True, use_prior=False):
        """Evaluate the log-likelihood with the test source
        normalization fixed at ``norm``.  With ``profile`` the other
        free parameters are re-optimized starting from their best-fit
        values, otherwise they are held there.  The best-fit state of
        the cache is not modified."""

        if not self._include_test:
            raise RuntimeError('Test source is not part of the current fit.')

        pars = self._best_fit_pars()
        itest = self.test_source_index
        pars[itest] = norm
        prior = self._active_prior() if use_prior else None
        fit_idx = np.array([i for i in range(len(pars)) if i != itest],
                           dtype=int)

        if not profile or not len(fit_idx):
            return self._objective(pars, prior)

        out = self._newton(pars, fit_idx, prior, self._max_iter, self._tol,
                           self._tol_type, self._init_lambda)
        return out[1]

    def estimate_uncertainty(self, delta_loglike=0.5, ipar=None):
        """Estimate the asymmetric errors on a parameter from the local
        quadratic expansion of the log-likelihood about the best fit.

        The expansion includes the gradient term which is non-zero when
        the parameter sits on its lower bound (zero), in which case the
        dependence is linear rather than quadratic.

        Parameters
        ----------
        delta_loglike : float
            Change in log-likelihood defining the interval (0.5 for a
            1-sigma interval).

        ipar : int
            Index of the parameter.  Defaults to the test source.

        Returns
        -------
        pos_err, neg_err : float
            Positive and negative errors.  The negative error is capped
            so that the interval does not extend below zero.  Both are
            nan if the covariance is unavailable.
        """
        if ipar is None:
            ipar = self.test_source_index
        if ipar < 0 or ipar >= self.n_free_current:
            raise IndexError('Parameter index %i out of range.' % ipar)

        if self._best_cov is None or self._degenerate:
            return np.nan, np.nan

        var = self._best_cov[ipar, ipar]
        if not np.isfinite(var) or var <= 0:
            return np.nan, np.nan

        g = self._best_grad[ipar]
        best = self._pars[ipar]
        s = np.sqrt(g**2 + 2.0 * delta_loglike / var)
        pos_err = var * (g + s)
        neg_err = min(var * (s - g), best)
        return pos_err, neg_err


def make_norm_scan(lo, best, hi, nnorm):
    """Create ``nnorm`` points spanning [lo, hi] that include ``best``
    exactly.  Points are distributed on either side of ``best`` in
    proportion to the width of each side.  Two points only cover the
    edges of the range."""

    if nnorm <= 1:
        return np.array([best])

    if nnorm == 2:
        return np.array([lo, hi], dtype=float)

    if hi > lo:
        frac = (best - lo) / (hi - lo)
    else:
        frac = 0.0

    nlo = int(np.round(frac * (nnorm - 1)))
    nlo = min(max(nlo, 0), nnorm - 1)
    if nlo == 0 and best > lo:
        nlo = 1

    norms_lo = np.linspace(lo, best, nlo + 1)[:-1]
    norms_hi = np.linspace(best, hi, nnorm - nlo)
    return np.concatenate((norms_lo, norms_hi))
