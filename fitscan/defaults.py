# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Configuration schemas.  Each option is a tuple of (default value,
help string, type)."""
import copy


def make_default_dict(d):
    """Return a dictionary with the default value of every option of a
    flat schema."""
    return dict((k, copy.deepcopy(v[0])) for k, v in d.items())


fileio = {
    'outdir': (None, 'Path of the output directory.  If none this will default to the directory containing the configuration file.', str),
    'logfile': (None, 'Path to log file.  If None then no log file will be written.', str),
    'write_npy': (False, 'Write a numpy file with the results of the scan.', bool),
}

logging = {
    'prefix': ('', 'Prefix that will be appended to the logger name.', str),
    'chatter': (3, 'Verbosity of the console output (0 = critical only, 4 = debug).', int),
}

# Options for the Newton's method fitter
optimizer = {
    'tol': (1E-3, 'Set the optimizer tolerance.', float),
    'max_iter': (30, 'Maximum number of iterations for the Newtons method fitter.', int),
    'tol_type': (0, 'Absolute (0) or relative (1) criteria for convergence.', int),
    'init_lambda': (0.0, 'Initial value of damping parameter for step size calculation '
                    'when using the Newton fitter.  A value of zero disables damping.', float),
    'use_reduced': (False, 'Fit using only the bins with non-zero counts and '
                    'per-energy-bin sums of the models over the remaining bins.', bool),
    'st_method': ('L-BFGS-B', 'Method passed to scipy.optimize.minimize for the '
                  'general-purpose fits enabled by st_scan_level.', str),
}

# Options for the scan grid
grid = {
    'interp': ('nearest', 'Pixel re-sampling used when translating the test source image. '
               'Valid options are nearest or linear.', str),
    'hpx_nside': (None, 'If set, scan over HEALPix pixels of this nside instead of the pixels of the map projection.', int),
    'hpx_nest': (False, 'Use NESTED (True) or RING (False) ordering for HEALPix scan grids.', bool),
    'hpx_radius': (1.0, 'Radius in degrees of the HEALPix scan region around the projection center.', float),
}

tscube = {
    'do_sed': (True, 'Compute the energy bin-by-bin fits', bool),
    'nnorm': (10, 'Number of points in the likelihood v. normalization scan', int),
    'norm_sigma': (5.0, 'Number of sigma to use for the scan range ', float),
    'cov_scale_bb': (-1.0, 'Scale factor to apply to global fitting '
                     'cov. matrix in broadband fits. ( < 0 -> no prior ) ', float),
    'cov_scale': (-1.0, 'Scale factor to apply to broadband fitting cov. '
                  'matrix in bin-by-bin fits ( < 0 -> fixed ) ', float),
    'tol': (1E-3, 'Criteria for fit convergence (estimated vertical distance to min < tol )', float),
    'max_iter': (30, 'Maximum number of iterations for the Newtons method fitter.', int),
    'tol_type': (0, 'Absolute (0) or relative (1) criteria for convergence.', int),
    'remake_test_source': (False, 'If true, recomputes the test source image (otherwise just shifts it)', bool),
    'st_scan_level': (0, 'Level to which to do general-optimizer fitting (0 = none, '
                      '1 = baseline fit, 2 = baseline and broadband fits)', int),
    'init_lambda': (0.0, 'Initial value of damping parameter for newton step size calculation.   '
                    'A value of zero disables damping.', float),
    'cl': (0.68268949, 'Confidence level of the asymmetric normalization errors.', float),
    'ul_confidence': (0.95, 'Confidence level of the normalization upper limits.', float),
    'use_reduced': optimizer['use_reduced'],
    'profile_scan': (False, 'Refit the background at every point of the normalization scan.', bool),
}

# Output of the Newton fitter
fit_output = {
    'fit_status': (None, 'Fitter return code (0 = converged, -2 = converged with '
                   'singular Hessian, 1 = iterations exhausted, 2 = no free parameters, '
                   '3 = invalid starting point).', int),
    'fit_success': (None, 'True if the fit converged.', bool),
    'degenerate': (None, 'True if the covariance was derived from the pseudo-inverse of a singular Hessian.', bool),
    'loglike': (None, 'Log-likelihood at the fitted parameters.', float),
    'edm': (None, 'Estimated distance to maximum of log-likelihood function.', float),
    'niter': (None, 'Number of Newton iterations.', int),
    'values': (None, 'Fitted parameter scale factors.', list),
    'errors': (None, 'Parabolic errors on the parameter scale factors.', list),
    'covariance': (None, 'Covariance matrix of the parameter scale factors.', list),
    'correlation': (None, 'Correlation matrix of the parameter scale factors.', list),
    'state': (None, 'State of the fit cache after the fit.', str),
}
