# Licensed under a 3-clause BSD style license - see LICENSE.rst
import numpy as np
from fitscan import wcs_utils
from fitscan import hpx_utils
from fitscan.hpx_utils import HPX


class ScanGrid(object):
    """ Abstract representation of the set of sky positions of a scan."""

    @property
    def npix(self):
        """Number of grid points."""
        raise NotImplementedError("ScanGrid.npix")

    @property
    def shape(self):
        """Shape of a map over the grid."""
        raise NotImplementedError("ScanGrid.shape")

    def get_pixel_skydirs(self):
        """Get the sky coordinates of every grid point."""
        raise NotImplementedError("ScanGrid.get_pixel_skydirs()")

    def get_pixel_indices(self, skydir):
        """Return the index of the grid point containing ``skydir``."""
        raise NotImplementedError("ScanGrid.get_pixel_indices()")


class WcsScanGrid(ScanGrid):
    """Grid of the pixel centers of a WCS projection.  Points are
    ordered with the x index varying fastest.

    Parameters
    ----------
    wcs : `~astropy.wcs.WCS`
        Projection.

    npix : tuple
        Number of pixels (nx, ny).
    """

    def __init__(self, wcs, npix):
        self._wcs = wcs
        self._nx, self._ny = int(npix[0]), int(npix[1])
        self._skydirs = None

    @classmethod
    def create_from_like(cls, like):
        return cls(like.wcs, like.npix_xy)

    @property
    def wcs(self):
        return self._wcs

    @property
    def npix(self):
        return self._nx * self._ny

    @property
    def shape(self):
        return (self._ny, self._nx)

    def get_pixel_skydirs(self):
        if self._skydirs is None:
            self._skydirs = wcs_utils.get_pixel_skydirs((self._nx, self._ny),
                                                        self._wcs)
        return self._skydirs

    def get_pixel_indices(self, skydir):
        xpix, ypix = wcs_utils.skydir_to_pix(skydir, self._wcs)
        valid = np.isfinite(xpix) & np.isfinite(ypix)
        ix = np.where(valid, np.round(xpix), -1).astype(int)
        iy = np.where(valid, np.round(ypix), -1).astype(int)
        idx = iy * self._nx + ix
        m = (ix < 0) | (ix >= self._nx) | (iy < 0) | (iy >= self._ny)
        idx[m] = -1
        return idx


class HpxScanGrid(ScanGrid):
    """Grid of the centers of a set of HEALPix pixels.

    Parameters
    ----------
    hpx : `~fitscan.hpx_utils.HPX`
        HEALPix pixelization.  The grid contains the pixels in the
        region of the pixelization.
    """

    def __init__(self, hpx):
        self._hpx = hpx

    @classmethod
    def create(cls, skydir, nside, radius, coordsys='CEL', nest=False):
        """Create a grid with the pixels within ``radius`` degrees of
        ``skydir``."""
        region = hpx_utils.create_hpx_disk_region_string(skydir, coordsys,
                                                         radius)
        return cls(HPX(nside, nest, coordsys, region))

    @property
    def hpx(self):
        return self._hpx

    @property
    def npix(self):
        return self._hpx.npix

    @property
    def shape(self):
        return (self._hpx.npix,)

    @property
    def pixsize(self):
        return hpx_utils.get_pixel_size_from_nside(self._hpx.nside)

    def get_pixel_skydirs(self):
        return self._hpx.get_sky_dirs()

    def get_pixel_indices(self, skydir):
        ipix = np.array(self._hpx.skydir_to_pixel(skydir), ndmin=1)
        idx = np.searchsorted(self._hpx.ipix, ipix)
        idx = np.clip(idx, 0, self.npix - 1)
        idx[self._hpx.ipix[idx] != ipix] = -1
        return idx
