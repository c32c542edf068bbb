# Licensed under a 3-clause BSD style license - see LICENSE.rst
import copy
import numpy as np


class HistND(object):
    """Multi-dimensional array of scan results with named axes.

    Parameters
    ----------
    name : str
        Name of the histogram.

    axes : list
        List of (name, nbins) tuples.

    fill_value : float
        Initial value of every bin.

    dtype : `~numpy.dtype`
        Data type of the bins.
    """

    def __init__(self, name, axes, fill_value=np.nan, dtype=float):
        self._name = name
        self._axes = [(str(k), int(n)) for k, n in axes]
        shape = tuple(n for k, n in self._axes)
        self._data = np.full(shape, fill_value, dtype=dtype)

    @classmethod
    def create(cls, name, npix, nebins=None, nnorm=None, **kwargs):
        """Create a histogram indexed by pixel and optionally by energy
        bin and normalization scan point."""
        axes = [('pix', npix)]
        if nebins is not None:
            axes += [('energy', nebins)]
        if nnorm is not None:
            axes += [('norm', nnorm)]
        return cls(name, axes, **kwargs)

    @property
    def name(self):
        return self._name

    @property
    def axes(self):
        return self._axes

    @property
    def axis_names(self):
        return [k for k, n in self._axes]

    @property
    def shape(self):
        return self._data.shape

    @property
    def data(self):
        return self._data

    def fill(self, value, *idx):
        """Set the bin at index ``idx``.  Trailing axes may be omitted
        to set a slice."""
        self._data[idx] = value

    def __getitem__(self, idx):
        return self._data[idx]

    def __setitem__(self, idx, value):
        self._data[idx] = value

    def reshape_pix(self, shape):
        """Return the data with the pixel axis expanded to ``shape``."""
        return self._data.reshape(tuple(shape) + self._data.shape[1:])

    def copy(self):
        return copy.deepcopy(self)
