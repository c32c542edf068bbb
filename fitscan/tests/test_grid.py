# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from numpy.testing import assert_allclose
import pytest
from astropy.coordinates import SkyCoord
from fitscan import wcs_utils
from fitscan import hpx_utils
from fitscan.hpx_utils import HPX
from fitscan.grid import WcsScanGrid, HpxScanGrid
from fitscan.hist import HistND
from fitscan.likelihood import TemplateLikelihood


def test_wcs_grid():

    skydir = SkyCoord(10.0, 0.0, unit='deg')
    like = TemplateLikelihood.create(np.zeros((5, 7)), skydir, 0.1,
                                     projection='CAR')
    grid = WcsScanGrid.create_from_like(like)

    assert grid.npix == 35
    assert grid.shape == (5, 7)

    skydirs = grid.get_pixel_skydirs()
    assert len(skydirs) == 35
    c = wcs_utils.pix_to_skydir(3.0, 2.0, like.wcs)
    assert_allclose(skydirs[2 * 7 + 3].ra.deg, c.ra.deg)
    assert_allclose(skydirs[2 * 7 + 3].dec.deg, c.dec.deg)

    # Map center is the reference point of the projection
    assert_allclose(skydirs[2 * 7 + 3].separation(skydir).deg, 0.0,
                    atol=1E-8)

    assert_allclose(grid.get_pixel_indices(skydirs), np.arange(35))
    far = wcs_utils.pix_to_skydir(20.0, 2.0, like.wcs)
    assert grid.get_pixel_indices(far)[0] == -1


def test_hpx_grid():

    skydir = SkyCoord(10.0, 0.0, unit='deg')
    grid = HpxScanGrid.create(skydir, 64, 3.0)

    assert grid.npix > 0
    assert grid.shape == (grid.npix,)
    assert grid.pixsize == 0.5
    assert np.all(np.diff(grid.hpx.ipix) > 0)

    skydirs = grid.get_pixel_skydirs()
    assert len(skydirs) == grid.npix
    assert np.all(skydirs.separation(skydir).deg < 3.0)
    assert_allclose(grid.get_pixel_indices(skydirs), np.arange(grid.npix))

    far = SkyCoord(100.0, 40.0, unit='deg')
    assert grid.get_pixel_indices(far)[0] == -1

    # Galactic pixelization
    grid = HpxScanGrid.create(skydir, 64, 3.0, coordsys='GAL', nest=True)
    assert grid.hpx.ordering == 'NESTED'
    skydirs = grid.get_pixel_skydirs()
    assert np.all(skydirs.separation(skydir).deg < 3.01)


def test_hpx_utils():

    assert hpx_utils.get_pixel_size_from_nside(1) == 32.0
    assert hpx_utils.get_pixel_size_from_nside(256) == 0.25

    skydir = SkyCoord(10.0, 0.0, unit='deg')
    region = hpx_utils.create_hpx_disk_region_string(skydir, 'CEL', 1.0)
    assert region == 'DISK(10.000,0.000,1.000)'
    assert hpx_utils.create_hpx_disk_region_string(skydir, 'CEL',
                                                   90.) is None

    with pytest.raises(ValueError):
        HPX(3, False, 'CEL')

    hpx = HPX(4, False, 'CEL')
    assert hpx.npix == 12 * 16
    assert hpx.region is None

    vec = hpx_utils.coords_to_vec(np.array([0.0, 90.0]), np.array([0.0, 0.0]))
    assert_allclose(vec, [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], atol=1E-12)


def test_hist():

    h = HistND.create('TSCUBE', 4, 3, 2)
    assert h.name == 'TSCUBE'
    assert h.shape == (4, 3, 2)
    assert h.axis_names == ['pix', 'energy', 'norm']
    assert np.all(np.isnan(h.data))

    h[1, 2] = [1.0, 2.0]
    h.fill(3.0, 0, 0, 1)
    assert_allclose(h[1, 2], [1.0, 2.0])
    assert h[0, 0, 1] == 3.0

    assert h.reshape_pix((2, 2)).shape == (2, 2, 3, 2)

    h2 = h.copy()
    h2[0] = 0.0
    assert h[0, 0, 1] == 3.0

    h = HistND.create('TSMAP_OK', 5, dtype=int, fill_value=-99)
    assert h.data.dtype == int
    assert np.all(h.data == -99)


def test_template_likelihood():

    skydir = SkyCoord(10.0, 0.0, unit='deg')
    counts = np.ones((2, 3, 4))
    like = TemplateLikelihood.create(counts, skydir, 0.1, projection='CAR',
                                     energies=[1E3, 1E4, 1E5])

    assert like.shape == (2, 3, 4)
    assert like.nebins == 2
    assert like.npix == 12
    assert like.npix_xy == (4, 3)

    like.add_source('galdiff', 2.0 * np.ones((2, 3, 4)))
    like.add_source('src', np.ones(24), free=False, norm=2.0)
    assert like.source_names() == ['galdiff', 'src']
    assert like.is_free('galdiff')
    assert not like.is_free('src')
    assert_allclose(like.model_counts(), 3.0 * np.ones((2, 3, 4)))
    assert_allclose(like.model_counts(exclude=['src']),
                    2.0 * np.ones((2, 3, 4)))

    with pytest.raises(KeyError):
        like.add_source('src', np.ones(24))

    like.set_norm('src', 4.0)
    assert like.norm_value('src') == 4.0
    assert_allclose(like.source_map('src'), 2.0 * np.ones((2, 3, 4)))

    like.set_free('src', True)
    assert like.is_free('src')

    like.delete_source('src')
    assert like.source_names() == ['galdiff']

    like.add_source('empty', np.ones(24), norm=0.0)
    with pytest.raises(ValueError):
        like.set_norm('empty', 1.0)

    with pytest.raises(ValueError):
        TemplateLikelihood(counts, like.wcs, energies=[1.0, 2.0])

    like = TemplateLikelihood(np.ones((3, 4)), like.wcs)
    assert like.shape == (1, 3, 4)
    assert_allclose(like.energies, [0.0, 1.0])
