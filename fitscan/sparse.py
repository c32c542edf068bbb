# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Sparse storage for model vectors that are zero over most bins
(e.g. the image of a point source in an all-sky pixelization)."""
import numpy as np


class SparseModel(object):
    """Model vector stored as parallel arrays of the indices and
    values of its non-zero bins.

    Parameters
    ----------
    indices : `~numpy.ndarray`
        Indices of the non-zero bins in increasing order.

    values : `~numpy.ndarray`
        Values of the non-zero bins.

    length : int
        Length of the equivalent dense vector.  If None the length is
        taken to be one past the largest index.
    """

    def __init__(self, indices, values, length=None):

        self._indices = np.array(indices, dtype=int, ndmin=1)
        self._values = np.array(values, dtype=float, ndmin=1)

        if self._indices.shape != self._values.shape:
            raise ValueError('Index and value arrays have different shapes: '
                             '%s %s' % (self._indices.shape, self._values.shape))

        if length is None:
            length = int(self._indices[-1]) + 1 if self.nnz else 0

        if self.nnz and (self._indices[0] < 0 or
                         self._indices[-1] >= length):
            raise ValueError('Index out of range for vector of length %i.'
                             % length)

        self._length = int(length)

    @classmethod
    def from_dense(cls, vector):
        """Create a sparse model from the non-zero entries of a dense
        vector."""
        vector = np.asarray(vector, dtype=float).ravel()
        indices = np.flatnonzero(vector)
        return cls(indices, vector[indices], len(vector))

    @property
    def indices(self):
        return self._indices

    @property
    def values(self):
        return self._values

    @property
    def length(self):
        return self._length

    @property
    def nnz(self):
        """Number of stored (non-zero) bins."""
        return len(self._indices)

    def __len__(self):
        return self._length

    def __eq__(self, other):
        if not isinstance(other, SparseModel):
            return NotImplemented
        return (self.length == other.length and
                np.array_equal(self.indices, other.indices) and
                np.array_equal(self.values, other.values))

    def __ne__(self, other):
        o = self.__eq__(other)
        if o is NotImplemented:
            return o
        return not o

    def __repr__(self):
        return '%s(nnz=%i, length=%i)' % (self.__class__.__name__,
                                          self.nnz, self.length)

    def sum(self):
        return np.sum(self._values)

    def restrict(self, lo, hi):
        """Return the entries with index in the half-open range
        [lo, hi) as a new sparse model of the same length."""
        m = (self._indices >= lo) & (self._indices < hi)
        return SparseModel(self._indices[m], self._values[m], self._length)

    def to_dense(self, length=None):
        """Expand to a dense vector.

        Parameters
        ----------
        length : int
            Length of the output vector.  Defaults to the length of
            the vector this model was created from.
        """
        length = self._length if length is None else int(length)

        if self.nnz and self._indices[-1] >= length:
            raise ValueError('Vector length %i is too short for index %i.'
                             % (length, self._indices[-1]))

        vector = np.zeros(length)
        vector[self._indices] = self._values
        return vector


def from_dense(vector):
    return SparseModel.from_dense(vector)


def to_dense(model, length=None):
    return model.to_dense(length)
