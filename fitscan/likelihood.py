# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Binned-likelihood providers.

A provider exposes the counts cube of an ROI and the predicted-counts
cube of each of its sources.  The scan engine only needs this narrow
interface and never sees how the source maps were computed.
"""
import copy
from collections import OrderedDict
import numpy as np
from fitscan import wcs_utils


class BinnedLikelihood(object):
    """Abstract interface of a binned-likelihood provider.  Cubes have
    shape (nebins, ny, nx)."""

    @property
    def counts(self):
        raise NotImplementedError("BinnedLikelihood.counts")

    @property
    def energies(self):
        """Energy bin edges."""
        raise NotImplementedError("BinnedLikelihood.energies")

    @property
    def wcs(self):
        raise NotImplementedError("BinnedLikelihood.wcs")

    @property
    def shape(self):
        return self.counts.shape

    @property
    def nebins(self):
        return self.shape[0]

    @property
    def npix(self):
        """Number of spatial pixels in each energy plane."""
        return int(np.prod(self.shape[1:]))

    @property
    def npix_xy(self):
        return self.shape[2], self.shape[1]

    def source_names(self):
        raise NotImplementedError("BinnedLikelihood.source_names")

    def source_map(self, name):
        """Return the predicted counts of source ``name`` at the value
        returned by `norm_value`."""
        raise NotImplementedError("BinnedLikelihood.source_map")

    def is_free(self, name):
        raise NotImplementedError("BinnedLikelihood.is_free")

    def norm_value(self, name):
        raise NotImplementedError("BinnedLikelihood.norm_value")

    def model_counts(self, exclude=None):
        """Sum of the source maps of all sources not in ``exclude``."""
        exclude = [] if exclude is None else exclude
        mcube = np.zeros(self.shape)
        for name in self.source_names():
            if name in exclude:
                continue
            mcube += self.source_map(name)
        return mcube


class TemplateLikelihood(BinnedLikelihood):
    """Binned-likelihood provider holding counts and source model cubes
    in memory.

    Parameters
    ----------
    counts : `~numpy.ndarray`
        Counts cube with shape (nebins, ny, nx).

    wcs : `~astropy.wcs.WCS`
        Celestial projection of the spatial axes.

    energies : `~numpy.ndarray`
        Energy bin edges.  Defaults to the bin indices.
    """

    def __init__(self, counts, wcs, energies=None):

        counts = np.array(counts, dtype=float)
        if counts.ndim == 2:
            counts = counts[np.newaxis, ...]
        if counts.ndim != 3:
            raise ValueError('Counts cube must have 3 dimensions: %s'
                             % str(counts.shape))

        if energies is None:
            energies = np.arange(counts.shape[0] + 1, dtype=float)
        energies = np.array(energies, dtype=float)
        if len(energies) != counts.shape[0] + 1:
            raise ValueError('Expected %i energy bin edges, got %i.'
                             % (counts.shape[0] + 1, len(energies)))

        self._counts = counts
        self._wcs = wcs
        self._energies = energies
        self._srcs = OrderedDict()

    @classmethod
    def create(cls, counts, skydir, cdelt, coordsys='CEL', projection='AIT',
               energies=None):
        """Create a provider with a projection centered on ``skydir``."""
        counts = np.array(counts, dtype=float, ndmin=3)
        ny, nx = counts.shape[1:]
        crpix = [(nx + 1) / 2., (ny + 1) / 2.]
        wcs = wcs_utils.create_wcs(skydir, coordsys, projection, cdelt, crpix)
        return cls(counts, wcs, energies)

    @property
    def counts(self):
        return self._counts

    @property
    def energies(self):
        return self._energies

    @property
    def wcs(self):
        return self._wcs

    def add_source(self, name, model, free=True, norm=1.0):
        """Add a source.

        Parameters
        ----------
        name : str
            Source name.

        model : `~numpy.ndarray`
            Predicted counts cube of the source at normalization
            ``norm``.

        free : bool
            Flag whether the normalization of the source is free.

        norm : float
            Value of the normalization parameter.
        """
        if name in self._srcs:
            raise KeyError('Source %s already exists.' % name)

        model = np.array(model, dtype=float).reshape(self.shape)
        self._srcs[name] = {'model': model, 'free': bool(free),
                            'norm': float(norm)}

    def delete_source(self, name):
        return self._srcs.pop(name)

    def set_free(self, name, free=True):
        self._srcs[name]['free'] = bool(free)

    def set_norm(self, name, norm):
        """Set the normalization of a source rescaling its model."""
        src = self._srcs[name]
        if src['norm'] == 0:
            raise ValueError('Cannot rescale source %s with zero '
                             'normalization.' % name)
        src['model'] = src['model'] * norm / src['norm']
        src['norm'] = float(norm)

    def source_names(self):
        return list(self._srcs.keys())

    def source_map(self, name):
        return copy.copy(self._srcs[name]['model'])

    def is_free(self, name):
        return self._srcs[name]['free']

    def norm_value(self, name):
        return self._srcs[name]['norm']
