# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from astropy.wcs import WCS
from astropy.coordinates import SkyCoord


def create_wcs(skydir, coordsys='CEL', projection='AIT',
               cdelt=1.0, crpix=1., naxis=2, energies=None):
    """Create a WCS object.

    Parameters
    ----------
    skydir : `~astropy.coordinates.SkyCoord`
        Sky coordinate of the WCS reference point.

    coordsys : str
        Coordinate system: CEL or GAL.

    projection : str
        Three-letter projection code (AIT, CAR, TAN, ...).

    cdelt : float
        Pixel size in degrees.

    crpix : float or (float,float)
        In the FITS convention the pixel coordinate of the reference
        point (1-based).

    naxis : int
        Number of dimensions.  If 3 a third (energy) axis is added.

    energies : `~numpy.ndarray`
        Energy bin edges used to define the third axis.
    """

    w = WCS(naxis=naxis)

    if coordsys == 'CEL':
        w.wcs.ctype[0] = 'RA---%s' % (projection)
        w.wcs.ctype[1] = 'DEC--%s' % (projection)
        w.wcs.crval[0] = skydir.icrs.ra.deg
        w.wcs.crval[1] = skydir.icrs.dec.deg
    elif coordsys == 'GAL':
        w.wcs.ctype[0] = 'GLON-%s' % (projection)
        w.wcs.ctype[1] = 'GLAT-%s' % (projection)
        w.wcs.crval[0] = skydir.galactic.l.deg
        w.wcs.crval[1] = skydir.galactic.b.deg
    else:
        raise ValueError('Unrecognized coordinate system: %s' % coordsys)

    crpix = np.array(crpix, ndmin=1)
    w.wcs.crpix[0] = crpix[0]
    w.wcs.crpix[1] = crpix[-1]
    w.wcs.cdelt[0] = -cdelt
    w.wcs.cdelt[1] = cdelt

    w = WCS(w.to_header())
    if naxis == 3 and energies is not None:
        w.wcs.crpix[2] = 1
        w.wcs.crval[2] = energies[0]
        w.wcs.cdelt[2] = energies[1] - energies[0]
        w.wcs.ctype[2] = 'Energy'
        w.wcs.cunit[2] = 'MeV'

    return w


def get_coordsys(wcs):

    if 'RA' in wcs.wcs.ctype[0]:
        return 'CEL'
    elif 'GLON' in wcs.wcs.ctype[0]:
        return 'GAL'
    else:
        raise ValueError('Unrecognized WCS coordinate system.')


def is_galactic(wcs):
    return get_coordsys(wcs) == 'GAL'


def wcs_to_skydir(wcs):
    """Return the sky coordinate of the WCS reference point."""
    lon = wcs.wcs.crval[0]
    lat = wcs.wcs.crval[1]
    if is_galactic(wcs):
        return SkyCoord(lon, lat, unit='deg', frame='galactic').icrs
    else:
        return SkyCoord(lon, lat, unit='deg', frame='icrs')


def skydir_to_pix(skydir, wcs):
    """Convert a sky coordinate to 0-based pixel coordinates.  Pixel
    coordinates are nan where the projection is undefined."""

    if is_galactic(wcs):
        lon = skydir.galactic.l.deg
        lat = skydir.galactic.b.deg
    else:
        lon = skydir.icrs.ra.deg
        lat = skydir.icrs.dec.deg

    lon = np.array(lon, ndmin=1)
    lat = np.array(lat, ndmin=1)

    with np.errstate(invalid='ignore'):
        xpix, ypix = wcs.celestial.wcs_world2pix(lon, lat, 0)

    return xpix, ypix


def pix_to_skydir(xpix, ypix, wcs):
    """Convert 0-based pixel coordinates to sky coordinates."""

    xpix = np.array(xpix)
    ypix = np.array(ypix)

    lon, lat = wcs.celestial.wcs_pix2world(xpix, ypix, 0)

    if is_galactic(wcs):
        return SkyCoord(lon, lat, unit='deg', frame='galactic').icrs
    else:
        return SkyCoord(lon, lat, unit='deg', frame='icrs')


def get_pixel_skydirs(npix, wcs):
    """Return the sky coordinates of the centers of all pixels in a
    map with shape ``npix`` = (nx, ny) ordered with x varying
    fastest."""

    nx, ny = npix
    yy, xx = np.meshgrid(np.arange(ny), np.arange(nx), indexing='ij')
    return pix_to_skydir(xx.ravel(), yy.ravel(), wcs)
