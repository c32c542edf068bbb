# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Cache of a test source model image that can be re-positioned on
the sky by shifting its pixel grid instead of recomputing the
response integral at every position."""
import logging
import numpy as np
from scipy.ndimage import shift as ndi_shift
from fitscan import wcs_utils
from fitscan.exceptions import ProjectionError

log = logging.getLogger(__name__)

INTERP_METHODS = ['nearest', 'linear']


def shift_image(image, dx, dy, interp='nearest'):
    """Shift every plane of an image cube by (dx, dy) pixels.

    Pixels shifted outside the map are dropped and pixels shifted in
    are set to zero.

    Parameters
    ----------
    image : `~numpy.ndarray`
        Array with shape (nebins, ny, nx).

    dx, dy : float
        Offset in pixels along the x (last) and y axes.

    interp : str
        ``nearest`` rounds the offset to whole pixels.  ``linear``
        re-samples fractional offsets with bilinear interpolation.
        Whole-pixel offsets are always applied as an exact copy.
    """

    if interp not in INTERP_METHODS:
        raise ValueError('Unrecognized interpolation method: %s' % interp)

    if interp == 'nearest':
        dx = np.round(dx)
        dy = np.round(dy)

    if dx == int(dx) and dy == int(dy):
        return _shift_image_int(image, int(dx), int(dy))

    out = np.zeros_like(image, dtype=float)
    for i in range(image.shape[0]):
        out[i] = ndi_shift(image[i], (dy, dx), order=1,
                           mode='constant', cval=0.0)
    return out


def _shift_image_int(image, dx, dy):

    nebins, ny, nx = image.shape
    out = np.zeros_like(image, dtype=float)

    if abs(dx) >= nx or abs(dy) >= ny:
        return out

    xs0, xs1 = max(0, -dx), min(nx, nx - dx)
    ys0, ys1 = max(0, -dy), min(ny, ny - dy)
    out[:, ys0 + dy:ys1 + dy, xs0 + dx:xs1 + dx] = image[:, ys0:ys1, xs0:xs1]
    return out


class TestSourceModelCache(object):
    """Reference model image of the test source and the projection
    used to bin it.

    Parameters
    ----------
    model : `~numpy.ndarray`
        Reference model image with shape (nebins, ny, nx) or a flat
        vector of length nebins * ny * nx.

    wcs : `~astropy.wcs.WCS`
        Projection of the map.

    skydir : `~astropy.coordinates.SkyCoord`
        Direction of the test source in the reference image.

    shape : tuple
        Map shape (nebins, ny, nx).  Required when ``model`` is flat.

    interp : str
        Re-sampling method used by `translate`.
    """

    # Keep pytest from collecting this class
    __test__ = False

    def __init__(self, model, wcs, skydir, shape=None, interp='nearest'):

        model = np.array(model, dtype=float)
        if shape is None:
            shape = model.shape
        if len(shape) != 3:
            raise ValueError('Map shape must be (nebins, ny, nx): %s'
                             % str(shape))

        self._shape = tuple(int(t) for t in shape)
        self._model = model.reshape(self._shape)
        self._model.flags.writeable = False
        self._wcs = wcs
        self._skydir = skydir

        if interp not in INTERP_METHODS:
            raise ValueError('Unrecognized interpolation method: %s' % interp)
        self._interp = interp

        xpix, ypix = self._skydir_to_pix(skydir)
        self._ref_pix = (xpix, ypix)

    @classmethod
    def create_from_like(cls, like, source_map_fn, skydir=None,
                         interp='nearest'):
        """Create a cache by evaluating the model of the test source
        at a reference direction.

        Parameters
        ----------
        like : `~fitscan.likelihood.BinnedLikelihood`
            Provider of the map geometry.

        source_map_fn : callable
            Function taking a `~astropy.coordinates.SkyCoord` and
            returning the unit-normalization model image of the test
            source at that position.

        skydir : `~astropy.coordinates.SkyCoord`
            Reference direction.  Defaults to the center of the map.
        """

        if skydir is None:
            nx, ny = like.npix_xy
            skydir = wcs_utils.pix_to_skydir(np.round((nx - 1.0) / 2.),
                                             np.round((ny - 1.0) / 2.),
                                             like.wcs)

        model = source_map_fn(skydir)
        return cls(model, like.wcs, skydir, shape=like.shape, interp=interp)

    @property
    def ref_model(self):
        return self._model

    @property
    def ref_skydir(self):
        return self._skydir

    @property
    def ref_pix(self):
        return self._ref_pix

    @property
    def wcs(self):
        return self._wcs

    @property
    def shape(self):
        return self._shape

    @property
    def interp(self):
        return self._interp

    def _skydir_to_pix(self, skydir):

        try:
            xpix, ypix = wcs_utils.skydir_to_pix(skydir, self._wcs)
        except ValueError as e:
            raise ProjectionError('Failed to project direction %s: %s'
                                  % (skydir, e))

        xpix = float(np.ravel(xpix)[0])
        ypix = float(np.ravel(ypix)[0])
        if not (np.isfinite(xpix) and np.isfinite(ypix)):
            raise ProjectionError('Direction %s cannot be mapped onto '
                                  'the map projection.' % skydir)

        return xpix, ypix

    def pixel_offset(self, skydir):
        """Return the signed offset (dx, dy) in pixels of ``skydir``
        with respect to the reference direction."""
        xpix, ypix = self._skydir_to_pix(skydir)
        return xpix - self._ref_pix[0], ypix - self._ref_pix[1]

    def translate(self, skydir):
        """Return a flat copy of the reference image shifted to
        ``skydir``.  The reference image is not modified."""

        dx, dy = self.pixel_offset(skydir)
        log.debug('Shifting test source image by (%.3f, %.3f) pix', dx, dy)
        return shift_image(self._model, dx, dy, self._interp).ravel()
