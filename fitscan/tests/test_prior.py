# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from numpy.testing import assert_allclose
import pytest
from fitscan.prior import MultivariatePrior
from fitscan.exceptions import SingularCovarianceError


def test_prior_masked():

    prior = MultivariatePrior([1.0, 2.0], np.diag([4.0, 9.0]),
                              mask=[True, False])

    assert prior.npar == 2
    assert not prior.include_test_source
    assert_allclose(prior.neg_log_likelihood([3.0, 10.0]), 0.5)
    assert_allclose(prior.gradient([3.0, 10.0]), [0.5, 0.0])
    assert_allclose(prior.hessian(), [[0.25, 0.0], [0.0, 0.0]])

    # Zero at the central values
    assert_allclose(prior.neg_log_likelihood([1.0, 5.0]), 0.0)

    # Returned Hessian is a copy
    h = prior.hessian()
    h[0, 0] = 100.
    assert_allclose(prior.hessian()[0, 0], 0.25)


def test_prior_correlated():

    prior = MultivariatePrior([0.0, 0.0], [[2.0, 1.0], [1.0, 2.0]])
    assert_allclose(prior.neg_log_likelihood([1.0, 1.0]), 1. / 3.)
    assert_allclose(prior.gradient([1.0, 1.0]), [1. / 3., 1. / 3.])
    assert_allclose(prior.hessian(),
                    np.array([[2.0, -1.0], [-1.0, 2.0]]) / 3.)


def test_prior_from_errors():

    prior = MultivariatePrior.create_from_errors([1.0, 1.0], [0.5, 2.0],
                                                 include_test_source=True)
    assert prior.include_test_source
    assert_allclose(prior.covariance, np.diag([0.25, 4.0]))
    assert_allclose(prior.neg_log_likelihood([1.5, 3.0]), 1.0)


def test_prior_singular():

    with pytest.raises(SingularCovarianceError):
        MultivariatePrior([1.0, 1.0], [[1.0, 1.0], [1.0, 1.0]])

    with pytest.raises(SingularCovarianceError):
        MultivariatePrior([1.0, 1.0], np.zeros((2, 2)))

    # The singular direction is excluded by the mask
    prior = MultivariatePrior([1.0, 1.0], [[1.0, 1.0], [1.0, 1.0]],
                              mask=[True, False])
    assert_allclose(prior.hessian(), [[1.0, 0.0], [0.0, 0.0]])


def test_prior_update():

    prior = MultivariatePrior([1.0], [[1.0]])
    prior.update([2.0], [[4.0]])
    assert_allclose(prior.neg_log_likelihood([4.0]), 0.5)

    with pytest.raises(ValueError):
        prior.update([1.0, 2.0], [[1.0]])

    with pytest.raises(ValueError):
        prior.update([1.0], [[1.0]], mask=[True, True])

    with pytest.raises(IndexError):
        prior.neg_log_likelihood([1.0, 2.0])
