# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Resolve the fitscan version string.

Inside a git working copy the version is derived from ``git describe``
and recorded in ``_version.py`` so that installed copies report the
version they were built from.
"""
import os
import re
import subprocess

__all__ = ["get_git_version"]

_dirname = os.path.abspath(os.path.dirname(__file__))
_version_file = os.path.join(_dirname, '_version.py')


def render_pep440(describe):
    """Turn the output of ``git describe`` (e.g. ``0.3-12-gabc1-dirty``)
    into a PEP440 local version (``0.3+12.gabc1.dirty``)."""

    if describe is None:
        return None

    tag, _, local = describe.partition('-')
    if not local:
        return tag
    return tag + '+' + local.replace('-', '.')


def call_git_describe(abbrev=4):
    cmd = ['git', 'describe', '--abbrev=%d' % abbrev, '--dirty', '--tags']
    try:
        out = subprocess.check_output(cmd, cwd=_dirname,
                                      stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.strip().decode('utf-8')


def read_release_version():
    if not os.path.isfile(_version_file):
        return None

    with open(_version_file) as f:
        m = re.search(r"__version__ = '([^']+)'", f.read())
    return m.group(1) if m else None


def write_release_version(version):
    with open(_version_file, 'w') as f:
        f.write("__version__ = '%s'\n" % version)


def get_git_version(abbrev=4):
    """Return the version of the package.  Falls back to the version
    recorded at the last build and finally to ``'unknown'``."""

    release_version = read_release_version()
    version = render_pep440(call_git_describe(abbrev))

    if version is None:
        return release_version or 'unknown'

    if version != release_version and os.access(_dirname, os.W_OK):
        write_release_version(version)

    return version


if __name__ == "__main__":
    print(get_git_version())
