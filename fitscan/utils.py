# Licensed under a 3-clause BSD style license - see LICENSE.rst
import os
import copy
from collections import OrderedDict
import numpy as np
import yaml
from scipy import special


def isstr(s):
    return isinstance(s, str)


def write_yaml(o, outfile, **kwargs):
    """Dump a nested structure of python and numpy objects to a YAML
    file."""
    with open(outfile, 'w') as f:
        yaml.dump(tolist(o), f, **kwargs)


def join_strings(strings, sep='_'):
    """Join the non-empty elements of ``strings``.  A single string is
    returned unchanged."""
    if strings is None:
        return ''
    if isstr(strings):
        strings = [strings]
    return sep.join(s for s in strings if s)


def format_filename(outdir, basename, prefix=None, extension=None):
    """Build an output path of the form
    ``outdir/[prefix_]basename[.extension]``."""

    filename = join_strings([join_strings(prefix), basename])
    if extension:
        filename += extension if extension.startswith('.') else '.' + extension
    return os.path.join(outdir, filename)


def edge_to_center(edges):
    edges = np.asarray(edges)
    return 0.5 * (edges[1:] + edges[:-1])


def cov_to_correlation(cov):
    """Convert a covariance matrix to a correlation matrix.  Rows and
    columns of parameters with zero or undefined variance are set to
    nan.

    Parameters
    ----------
    cov : `~numpy.ndarray`
        N x N covariance matrix.

    Returns
    -------
    corr : `~numpy.ndarray`
        N x N correlation matrix.
    """
    cov = np.asarray(cov, dtype=float)
    err = np.sqrt(np.abs(np.diag(cov)))
    with np.errstate(divide='ignore'):
        scale = np.where(np.isfinite(err) & (err > 0), 1. / err, np.nan)
    return cov * np.outer(scale, scale)


def twosided_cl_to_dlnl(cl):
    """Return the change in log-likelihood from the maximum that
    bounds a two-sided interval with confidence level ``cl``."""
    return special.erfinv(cl)**2


def onesided_cl_to_dlnl(cl):
    """Return the change in log-likelihood from the maximum that
    bounds a one-sided interval (upper limit) with confidence level
    ``cl``."""
    return special.erfinv(2. * cl - 1.)**2


def create_dict(d0, **kwargs):
    """Return a copy of ``d0`` updated with ``kwargs``.  New keys are
    added."""
    return merge_dict(copy.deepcopy(d0), kwargs, add_new_keys=True)


def merge_dict(d0, d1, add_new_keys=False, append_arrays=False):
    """Recursively merge dictionary ``d1`` into a copy of ``d0``.

    Values of ``d1`` are cast to the type of the matching value in
    ``d0`` when both are set and their types differ.  A comma-separated
    string is split when the value in ``d0`` is a list.

    Parameters
    ----------
    d0 : dict
        Input dictionary.

    d1 : dict
        Dictionary merged into the input dictionary.

    add_new_keys : bool
        Add keys that only exist in ``d1``.  By default they are
        skipped.

    append_arrays : bool
        Concatenate numpy arrays instead of replacing them.

    Raises
    ------
    TypeError
        A list or dict in ``d0`` would be replaced by an incompatible
        type.
    """

    if d1 is None:
        return d0
    if d0 is None:
        return d1

    od = {}
    for k, v0 in d0.items():

        if k not in d1:
            od[k] = copy.deepcopy(v0)
            continue

        v1 = d1[k]
        if isinstance(v0, dict) and isinstance(v1, dict):
            od[k] = merge_dict(v0, v1, add_new_keys, append_arrays)
        elif isinstance(v0, dict) and v1 is None:
            od[k] = copy.deepcopy(v0)
        elif isinstance(v0, list) and isstr(v1):
            od[k] = v1.split(',')
        elif isinstance(v0, np.ndarray) and append_arrays:
            od[k] = np.concatenate((v0, v1))
        elif v0 is None or v1 is None or type(v0) == type(v1):
            od[k] = copy.copy(v1)
        elif isinstance(v0, (dict, list)):
            raise TypeError('Conflicting types in dictionary merge for '
                            'key %s: %s %s' % (k, type(v0), type(v1)))
        else:
            od[k] = type(v0)(v1)

    if add_new_keys:
        for k, v1 in d1.items():
            if k not in d0:
                od[k] = copy.deepcopy(v1)

    return od


def tolist(x):
    """Convert nested containers of numpy objects to builtin python
    types (e.g. before writing them to YAML)."""
    if isinstance(x, (list, tuple)):
        return [tolist(t) for t in x]
    elif isinstance(x, (dict, OrderedDict)):
        return dict((tolist(k), tolist(v)) for k, v in x.items())
    elif isinstance(x, (np.ndarray, np.generic)):
        return tolist(x.tolist())
    return x
