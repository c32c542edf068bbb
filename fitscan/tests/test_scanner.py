# Licensed under a 3-clause BSD style license - see LICENSE.rst
import os
import numpy as np
from numpy.testing import assert_allclose
import pytest
from fitscan import wcs_utils
from fitscan import scanner
from fitscan.scanner import ScanDriver
from fitscan.grid import WcsScanGrid, HpxScanGrid
from fitscan.exceptions import ProjectionError
from fitscan.tests.utils import create_test_like, make_source_map_fn, NPIX

QUIET = {'logging': {'chatter': 0}}


def make_config(**kwargs):
    config = {'logging': {'chatter': 0}}
    config.update(kwargs)
    return config


@pytest.fixture(scope='module')
def tscube():
    like, center = create_test_like()
    driver = ScanDriver(like, make_source_map_fn(like.wcs),
                        config=make_config(tscube={'nnorm': 5}))
    return driver, driver.run_tscube()


def test_tscube_output(tscube):

    driver, o = tscube
    npix = NPIX * NPIX

    assert isinstance(driver.grid, WcsScanGrid)
    assert driver.n_pixels == npix
    assert driver.n_ebins == 3
    assert driver.n_norms == 5

    data = o['scan_data']
    assert o['ts'].shape == (NPIX, NPIX)
    assert o['norm'].shape == (NPIX, NPIX)
    assert data['TS_MAP'].shape == (npix,)
    assert data['TSCUBE'].shape == (npix, 3)
    assert data['NORMSCAN'].shape == (npix, 3, 5)
    assert data['NLL_SCAN'].shape == (npix, 3, 5)

    assert np.all(data['TSMAP_OK'] <= 0)
    assert np.all(data['TSCUBE_OK'] <= 0)
    assert np.all(np.isfinite(data['TS_MAP']))
    assert np.all(data['TS_MAP'] >= 0)
    assert np.all(data['TSCUBE'] >= 0)


def test_tscube_source(tscube):

    driver, o = tscube
    ts = o['ts']
    center = NPIX // 2

    assert ts[center, center] == np.max(ts)
    assert ts[center, center] > 100.
    assert_allclose(o['norm'][center, center], 1.0, rtol=0.1)

    ipix = center * NPIX + center
    data = o['scan_data']
    assert np.all(data['TSCUBE'][ipix] > 25.)
    assert_allclose(data['N_CUBE'][ipix], np.ones(3), rtol=0.2)
    assert np.all(data['ERRPCUBE'][ipix] > 0)
    assert np.all(data['ULCUBE'][ipix] > data['N_CUBE'][ipix])

    # The best fit is one of the scan points and the scan maximum
    for i in range(3):
        norms = data['NORMSCAN'][ipix, i]
        nll = data['NLL_SCAN'][ipix, i]
        assert_allclose(norms[np.argmin(nll)], data['N_CUBE'][ipix, i])
        assert_allclose(np.min(nll), data['NLL_CUBE'][ipix, i])


def test_tscube_table(tscube):

    driver, o = tscube
    tab = o['table']
    npix = NPIX * NPIX

    assert len(tab) == npix
    for col in ['ra', 'dec', 'fit_ts', 'fit_norm', 'fit_norm_errp',
                'fit_norm_ul', 'fit_status', 'ts', 'norm', 'norm_errp',
                'norm_ul', 'bin_status', 'norm_scan', 'dloglike_scan']:
        assert col in tab.columns

    assert tab['ts'].shape == (npix, 3)
    assert tab['norm_scan'].shape == (npix, 3, 5)
    assert_allclose(tab['fit_ts'], o['scan_data']['TS_MAP'])
    assert np.all(np.nanmax(tab['dloglike_scan'], axis=2) == 0)

    skydirs = driver.grid.get_pixel_skydirs()
    assert_allclose(tab['ra'], skydirs.ra.deg)

    ebounds = o['ebounds']
    assert len(ebounds) == 3
    assert_allclose(ebounds['e_ref'], np.sqrt(ebounds['e_min'] *
                                              ebounds['e_max']))


def test_tsmap_no_source():

    like, center = create_test_like()

    def fn(skydir):
        return np.zeros(like.shape)

    driver = ScanDriver(like, fn, config=QUIET)
    o = driver.run_tscube(nnorm=3)
    data = o['scan_data']

    assert np.all(data['TS_MAP'] == 0)
    assert np.all(data['N_MAP'] == 0)
    assert np.all(data['TSCUBE'] == 0)
    assert np.all(data['TSMAP_OK'] <= 0)


def test_tsmap():

    like, center = create_test_like()
    driver = ScanDriver(like, make_source_map_fn(like.wcs), config=QUIET)
    o = driver.run_tsmap()

    assert 'TSCUBE' not in o['scan_data']
    assert 'NORMSCAN' not in o['scan_data']
    assert 'ts' not in o['table'].columns
    assert o['ts'].shape == (NPIX, NPIX)
    assert_allclose(driver.null_loglike, o['null_loglike'])
    assert driver.ts_map()[NPIX // 2, NPIX // 2] > 100.

    # Recomputing the test source at every position
    o2 = driver.run_tsmap(remake_test_source=True)
    assert_allclose(o2['ts'], o['ts'], rtol=1E-3, atol=1E-3)


def test_tsmap_general_optimizer():

    like, center = create_test_like()
    driver = ScanDriver(like, make_source_map_fn(like.wcs), config=QUIET)
    ts0 = driver.run_tsmap()['ts']
    ts1 = driver.run_tsmap(st_scan_level=2)['ts']
    assert_allclose(ts1[NPIX // 2, NPIX // 2], ts0[NPIX // 2, NPIX // 2],
                    rtol=1E-2)


def test_tscube_priors():

    like, center = create_test_like()
    driver = ScanDriver(like, make_source_map_fn(like.wcs),
                        config=make_config(tscube={'cov_scale_bb': 1.0,
                                                   'cov_scale': 1.0,
                                                   'nnorm': 3}))
    o = driver.run_tscube()
    data = o['scan_data']

    assert driver.fitcache.prior_bkg is not None
    assert np.all(data['TSMAP_OK'] <= 0)
    assert np.all(data['TSCUBE_OK'] <= 0)
    assert o['ts'][NPIX // 2, NPIX // 2] > 100.


def test_tsmap_projection_error():

    like, center = create_test_like()
    source_map_fn = make_source_map_fn(like.wcs)

    def fn(skydir):
        xpix, ypix = wcs_utils.skydir_to_pix(skydir, like.wcs)
        if xpix[0] < 0.5:
            raise ProjectionError('Direction outside of the model region.')
        return source_map_fn(skydir)

    driver = ScanDriver(like, fn, config=QUIET)
    o = driver.run_tsmap(remake_test_source=True)
    data = o['scan_data']

    bad = np.arange(NPIX * NPIX) % NPIX == 0
    assert np.all(data['TSMAP_OK'][bad] == scanner.STATUS_PROJECTION_ERROR)
    assert np.all(np.isnan(data['TS_MAP'][bad]))
    assert np.all(data['TSMAP_OK'][~bad] <= 0)
    assert np.all(np.isfinite(data['TS_MAP'][~bad]))


def test_tsmap_hpx_grid():

    like, center = create_test_like()
    driver = ScanDriver(like, make_source_map_fn(like.wcs),
                        config=make_config(grid={'hpx_nside': 256,
                                                 'hpx_radius': 0.4}))
    assert isinstance(driver.grid, HpxScanGrid)
    npix = driver.grid.npix
    assert npix > 0

    o = driver.run_tsmap()
    assert o['ts'].shape == (npix,)
    assert len(o['table']) == npix
    assert np.all(o['scan_data']['TSMAP_OK'] <= 0)
    assert np.max(o['ts']) > 25.

    idx = driver.grid.get_pixel_indices(center)
    assert idx[0] >= 0


def test_custom_grid():

    like, center = create_test_like()
    grid = HpxScanGrid.create(center, 512, 0.2)
    driver = ScanDriver(like, make_source_map_fn(like.wcs), grid=grid,
                        config=QUIET)
    assert driver.grid is grid
    o = driver.run_tsmap()
    assert o['ts'].shape == (grid.npix,)


def test_write_npy(tmpdir):

    like, center = create_test_like()
    driver = ScanDriver(like, make_source_map_fn(like.wcs),
                        config=make_config(fileio={'outdir': str(tmpdir),
                                                   'write_npy': True}))
    o = driver.run_tsmap()

    assert o['file'] == os.path.join(str(tmpdir), 'tscube.npy')
    assert os.path.isfile(o['file'])

    data = np.load(o['file'], allow_pickle=True).flat[0]
    assert_allclose(data['TS_MAP'], o['scan_data']['TS_MAP'])
    assert_allclose(data['null_loglike'], o['null_loglike'])
