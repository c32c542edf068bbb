# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from numpy.testing import assert_allclose
import pytest
from astropy.coordinates import SkyCoord
from fitscan import wcs_utils
from fitscan.srcmap_cache import TestSourceModelCache, shift_image
from fitscan.exceptions import ProjectionError
from fitscan.tests.utils import make_wcs, make_gaussian_cube, NPIX
from fitscan.tests.utils import create_test_like, make_source_map_fn


def make_cache(interp='nearest'):
    wcs = make_wcs()
    ref = wcs_utils.pix_to_skydir(5.0, 5.0, wcs)
    model = make_gaussian_cube(wcs, ref)
    return TestSourceModelCache(model, wcs, ref, interp=interp), model


def test_shift_image_integer():

    image = np.arange(2 * 4 * 5, dtype=float).reshape((2, 4, 5))
    out = shift_image(image, 2, -1)
    expected = np.zeros_like(image)
    expected[:, :3, 2:] = image[:, 1:, :3]
    assert np.array_equal(out, expected)

    # Shifts larger than the map leave nothing
    assert np.all(shift_image(image, 5, 0) == 0)
    assert np.all(shift_image(image, 0, -4) == 0)

    # Nearest rounds the offset
    assert np.array_equal(shift_image(image, 1.8, -0.6), out)

    with pytest.raises(ValueError):
        shift_image(image, 1, 1, interp='cubic')


def test_shift_image_linear():

    image = np.zeros((1, 5, 5))
    image[0, 2, 2] = 1.0
    out = shift_image(image, 0.5, 0.0, interp='linear')
    assert_allclose(out[0, 2, 2:4], [0.5, 0.5])
    assert_allclose(np.sum(out), 1.0)


def test_translate_reference():

    cache, model = make_cache()
    assert cache.shape == (3, NPIX, NPIX)
    assert_allclose(cache.ref_pix, (5.0, 5.0), atol=1E-8)

    out = cache.translate(cache.ref_skydir)
    assert out.shape == (model.size,)
    assert np.array_equal(out, model.ravel())


def test_translate_whole_pixels():

    cache, model = make_cache()
    skydir = wcs_utils.pix_to_skydir(7.0, 4.0, cache.wcs)

    dx, dy = cache.pixel_offset(skydir)
    assert_allclose([dx, dy], [2.0, -1.0], atol=1E-6)

    out = cache.translate(skydir).reshape(model.shape)
    expected = np.zeros_like(model)
    expected[:, :NPIX - 1, 2:] = model[:, 1:, :NPIX - 2]
    assert np.array_equal(out, expected)

    # The reference image is never modified
    assert np.array_equal(cache.ref_model, model)
    assert not cache.ref_model.flags.writeable


def test_translate_linear():

    cache, model = make_cache(interp='linear')
    skydir = wcs_utils.pix_to_skydir(5.5, 5.0, cache.wcs)
    out = cache.translate(skydir).reshape(model.shape)

    assert_allclose(np.sum(out, axis=(1, 2)), np.sum(model, axis=(1, 2)),
                    rtol=1E-4)
    assert_allclose(out[:, 5, 5], out[:, 5, 6], rtol=1E-6)

    # Whole-pixel offsets are still exact
    skydir = wcs_utils.pix_to_skydir(6.0, 5.0, cache.wcs)
    out = cache.translate(skydir).reshape(model.shape)
    assert_allclose(out[:, 5, 6], model[:, 5, 5], rtol=1E-6)


def test_translate_off_map():

    cache, model = make_cache()
    skydir = wcs_utils.pix_to_skydir(30.0, 5.0, cache.wcs)
    assert np.all(cache.translate(skydir) == 0)


def test_projection_error():

    cache, model = make_cache()
    with pytest.raises(ProjectionError):
        cache.translate(SkyCoord(np.nan, np.nan, unit='deg'))


def test_create_from_like():

    like, center = create_test_like()
    cache = TestSourceModelCache.create_from_like(like,
                                                  make_source_map_fn(like.wcs))
    assert cache.shape == like.shape
    assert_allclose(cache.ref_pix, (5.0, 5.0), atol=1E-8)
    assert_allclose(cache.translate(center),
                    make_gaussian_cube(like.wcs, center).ravel())

    with pytest.raises(ValueError):
        TestSourceModelCache(np.zeros(10), like.wcs, center)

    with pytest.raises(ValueError):
        TestSourceModelCache(np.zeros(like.shape), like.wcs, center,
                             interp='cubic')
