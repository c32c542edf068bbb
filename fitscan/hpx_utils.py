# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""
Utilities for defining scan grids on HEALPix pixelizations
"""
import re
import healpy as hp
import numpy as np
from astropy.coordinates import SkyCoord

# Approximate size of HEALPix pixels (in degrees) for each order
HPX_ORDER_TO_PIXSIZE = [32.0, 16.0, 8.0, 4.0, 2.0, 1.0,
                        0.50, 0.25, 0.1, 0.05, 0.025, 0.01,
                        0.005, 0.002]

_disk_region = re.compile(r'^(DISK|DISK_INC)\(([^)]*)\)$')


def skydir_to_lonlat(skydir, coordsys):
    """Return the longitude and latitude in degrees of ``skydir`` in the
    ``'CEL'`` or ``'GAL'`` coordinate system."""

    if coordsys in ('CEL', 'EQU'):
        skydir = skydir.transform_to('icrs')
        return skydir.ra.deg, skydir.dec.deg
    elif coordsys == 'GAL':
        skydir = skydir.transform_to('galactic')
        return skydir.l.deg, skydir.b.deg

    raise ValueError('Unrecognized coordinate system %s' % coordsys)


def coords_to_vec(lon, lat):
    """Convert longitude and latitude in degrees to an array of
    shape (N, 3) of unit vectors."""
    vec = hp.ang2vec(np.asarray(lon, dtype=float),
                     np.asarray(lat, dtype=float), lonlat=True)
    return np.atleast_2d(vec)


def get_pixel_size_from_nside(nside):
    """Return a rounded estimate of the pixel size in degrees for a
    HEALPix ``nside``."""
    order = int(np.log2(nside))
    if not 0 <= order < len(HPX_ORDER_TO_PIXSIZE):
        raise ValueError('HEALPix order must be between 0 and %i: %i' %
                         (len(HPX_ORDER_TO_PIXSIZE) - 1, order))
    return HPX_ORDER_TO_PIXSIZE[order]


def create_hpx_disk_region_string(skydir, coordsys, radius, inclusive=0):
    """Create a region string for a disk of ``radius`` degrees
    centered on ``skydir``.  Returns None for an all-sky region.  A
    nonzero ``inclusive`` selects every pixel overlapping the disk
    with that oversampling factor."""

    if radius >= 90.:
        return None

    lon, lat = skydir_to_lonlat(skydir, coordsys)
    if inclusive:
        return 'DISK_INC(%.3f,%.3f,%.3f,%i)' % (lon, lat, radius, inclusive)
    return 'DISK(%.3f,%.3f,%.3f)' % (lon, lat, radius)


def parse_hpx_region(nside, nest, region):
    """Return the sorted pixel indices selected by a region string."""

    m = _disk_region.match(region.replace(' ', ''))
    if m is None:
        raise ValueError('Unrecognized HEALPix region: %s' % region)

    args = m.group(2).split(',')
    vec = coords_to_vec(float(args[0]), float(args[1]))[0]
    radius = np.radians(float(args[2]))

    if m.group(1) == 'DISK_INC':
        ipix = hp.query_disc(nside, vec, radius, inclusive=True,
                             fact=int(args[3]), nest=nest)
    else:
        ipix = hp.query_disc(nside, vec, radius, inclusive=False, nest=nest)
    return np.sort(ipix)


class HPX(object):
    """A HEALPix pixelization restricted to the pixels of an optional
    region.

    Parameters
    ----------
    nside : int
        HEALPix nside parameter.

    nest : bool
        Use the NESTED rather than the RING indexing scheme.

    coordsys : str
        Coordinate system of the pixelization (``'CEL'`` or ``'GAL'``).

    region : str
        Region string (see `create_hpx_disk_region_string`).  The
        full sky is used when None.
    """

    def __init__(self, nside, nest, coordsys, region=None):

        if nside <= 0 or not hp.isnsideok(nside):
            raise ValueError('Invalid HEALPix nside: %s' % nside)

        self._nside = int(nside)
        self._nest = bool(nest)
        self._coordsys = coordsys
        self._region = region

        if region:
            self._ipix = parse_hpx_region(self._nside, self._nest, region)
        else:
            self._ipix = np.arange(hp.nside2npix(self._nside))

    @property
    def ordering(self):
        return 'NESTED' if self._nest else 'RING'

    @property
    def nside(self):
        return self._nside

    @property
    def nest(self):
        return self._nest

    @property
    def npix(self):
        return len(self._ipix)

    @property
    def ipix(self):
        return self._ipix

    @property
    def coordsys(self):
        return self._coordsys

    @property
    def region(self):
        return self._region

    def get_sky_coords(self):
        """Return an array of shape (npix, 2) with the longitude and
        latitude of the pixel centers."""
        lon, lat = hp.pix2ang(self._nside, self._ipix, self._nest,
                              lonlat=True)
        return np.vstack([lon, lat]).T

    def get_sky_dirs(self):
        """Return the pixel centers as an ICRS `~astropy.coordinates.SkyCoord`."""
        lon, lat = self.get_sky_coords().T
        if self._coordsys == 'GAL':
            return SkyCoord(l=lon, b=lat, unit='deg', frame='galactic').icrs
        return SkyCoord(ra=lon, dec=lat, unit='deg')

    def skydir_to_pixel(self, skydir):
        """Return the HEALPix index of the pixel containing ``skydir``."""
        lon, lat = skydir_to_lonlat(skydir, self._coordsys)
        return hp.ang2pix(self._nside, lon, lat, self._nest, lonlat=True)
