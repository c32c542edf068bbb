# Licensed under a 3-clause BSD style license - see LICENSE.rst
import os
from .version import get_git_version

__version__ = get_git_version()

PACKAGE_ROOT = os.path.abspath(os.path.dirname(__file__))
os.environ['FITSCAN_ROOT'] = PACKAGE_ROOT
