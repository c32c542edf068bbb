# Licensed under a 3-clause BSD style license - see LICENSE.rst


class FitScanError(Exception):
    """Base class for errors raised by the scan engine."""


class ProjectionError(FitScanError):
    """A sky direction could not be mapped onto the pixel grid of a
    map projection."""


class SingularCovarianceError(FitScanError):
    """A covariance matrix (or the masked sub-block of one) is not
    invertible."""


class ConvergenceFailure(FitScanError):
    """The Newton fitter exhausted its iterations before reaching the
    requested tolerance.  The fit output of the last iterate is kept
    in ``result``."""

    def __init__(self, msg, result=None):
        super(ConvergenceFailure, self).__init__(msg)
        self.result = result
