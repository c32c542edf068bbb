# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from fitscan.exceptions import SingularCovarianceError


class MultivariatePrior(object):
    """Gaussian constraint on a subset of the parameters of a fit.

    The prior contributes the term

        0.5 * (p - c)^T S^-1 (p - c)

    to the negative log-likelihood, where the sum runs only over the
    parameters selected by ``mask`` and S is the masked sub-block of
    the covariance matrix.  Parameters outside the mask are
    unconstrained.

    Parameters
    ----------
    central_vals : `~numpy.ndarray`
        Central values of the N parameters.

    covariance : `~numpy.ndarray`
        N x N covariance matrix.

    mask : `~numpy.ndarray`
        Boolean array of length N selecting the constrained
        parameters.  If None all parameters are constrained.

    include_test_source : bool
        Flag whether the parameter set this prior applies to contains
        the normalization of the test source.
    """

    def __init__(self, central_vals, covariance, mask=None,
                 include_test_source=False):
        self.update(central_vals, covariance, mask, include_test_source)

    @classmethod
    def create_from_errors(cls, central_vals, errors, mask=None,
                           include_test_source=False):
        """Create a prior with a diagonal covariance matrix from a set
        of 1-sigma errors."""
        errors = np.array(errors, dtype=float, ndmin=1)
        return cls(central_vals, np.diag(errors**2), mask,
                   include_test_source)

    def update(self, central_vals, covariance, mask=None,
               include_test_source=None):

        central_vals = np.array(central_vals, dtype=float, ndmin=1)
        npar = len(central_vals)
        covariance = np.array(covariance, dtype=float)
        if covariance.size == npar * npar:
            covariance = covariance.reshape((npar, npar))
        else:
            raise ValueError('Covariance matrix of shape %s is inconsistent '
                             'with %i parameters.' % (covariance.shape, npar))

        if mask is None:
            mask = np.ones(npar, dtype=bool)
        mask = np.array(mask, dtype=bool, ndmin=1)
        if len(mask) != npar:
            raise ValueError('Mask of length %i is inconsistent '
                             'with %i parameters.' % (len(mask), npar))

        self._central_vals = central_vals
        self._covariance = covariance
        self._mask = mask
        if include_test_source is not None:
            self._include_test_source = bool(include_test_source)
        self._latch_reduced_matrix()

    def _latch_reduced_matrix(self):
        """Invert the masked sub-block of the covariance and embed the
        result in the full parameter space."""

        idx = np.flatnonzero(self._mask)
        cov_red = self._covariance[np.ix_(idx, idx)]

        npar = len(self._central_vals)
        self._hessian = np.zeros((npar, npar))

        if not len(idx):
            return

        if not np.all(np.isfinite(cov_red)):
            raise SingularCovarianceError(
                'Prior covariance contains non-finite values.')

        try:
            cov_inv = np.linalg.inv(cov_red)
        except np.linalg.LinAlgError as e:
            raise SingularCovarianceError(
                'Prior covariance is singular on the constrained '
                'parameters: %s' % e)

        if not np.all(np.isfinite(cov_inv)):
            raise SingularCovarianceError(
                'Prior covariance is singular on the constrained parameters.')

        self._hessian[np.ix_(idx, idx)] = cov_inv

    @property
    def npar(self):
        return len(self._central_vals)

    @property
    def central_vals(self):
        return self._central_vals

    @property
    def covariance(self):
        return self._covariance

    @property
    def mask(self):
        return self._mask

    @property
    def include_test_source(self):
        return self._include_test_source

    def _delta(self, params):
        params = np.array(params, dtype=float, ndmin=1)
        if len(params) != self.npar:
            raise IndexError('Expected %i parameters, got %i.'
                             % (self.npar, len(params)))
        delta = params - self._central_vals
        delta[~self._mask] = 0.0
        return delta

    def neg_log_likelihood(self, params):
        delta = self._delta(params)
        return 0.5 * np.dot(delta, np.dot(self._hessian, delta))

    def gradient(self, params):
        """Gradient of the negative log-likelihood.  Zero for the
        unconstrained parameters."""
        return np.dot(self._hessian, self._delta(params))

    def hessian(self):
        return self._hessian.copy()
