# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from astropy.coordinates import SkyCoord
from fitscan import wcs_utils
from fitscan.likelihood import TemplateLikelihood

NPIX = 11
CDELT = 0.1
EBINS = np.array([1E3, 1E4, 1E5, 1E6])
SRC_AMPL = np.array([60., 30., 10.])
BKG_LEVEL = 5.0


def make_wcs(skydir=None, projection='CAR'):
    if skydir is None:
        skydir = SkyCoord(10.0, 0.0, unit='deg')
    crpix = (NPIX + 1) / 2.
    return wcs_utils.create_wcs(skydir, 'CEL', projection, CDELT, crpix)


def make_gaussian_cube(wcs, skydir, ampl=SRC_AMPL, sigma=1.0, npix=NPIX):
    """Cube of a gaussian blob centered on ``skydir`` with a width of
    ``sigma`` pixels and peak value ``ampl`` in each energy plane."""
    xpix, ypix = wcs_utils.skydir_to_pix(skydir, wcs)
    yy, xx = np.meshgrid(np.arange(npix), np.arange(npix), indexing='ij')
    r2 = (xx - xpix[0])**2 + (yy - ypix[0])**2
    img = np.exp(-0.5 * r2 / sigma**2)
    return np.array(ampl)[:, np.newaxis, np.newaxis] * img[np.newaxis, ...]


def make_source_map_fn(wcs, ampl=SRC_AMPL):

    def fn(skydir):
        return make_gaussian_cube(wcs, skydir, ampl)

    return fn


def create_test_like(src_ampl=SRC_AMPL, bkg_free=True):
    """Create a provider with a flat background and a source at the
    center of the map.  The counts are the rounded model."""
    wcs = make_wcs()
    center = wcs_utils.pix_to_skydir((NPIX - 1) / 2., (NPIX - 1) / 2., wcs)
    bkg = BKG_LEVEL * np.ones((len(EBINS) - 1, NPIX, NPIX))
    src = make_gaussian_cube(wcs, center, src_ampl)
    counts = np.round(bkg + src)
    like = TemplateLikelihood(counts, wcs, EBINS)
    like.add_source('galdiff', bkg, free=bkg_free)
    return like, center
