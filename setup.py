#!/usr/bin/env python
from setuptools import setup, find_packages
from fitscan.version import get_git_version

_version = get_git_version()
if _version == 'unknown':
    # No git metadata and no _version.py: use a PEP 440 placeholder
    _version = '0.0.0'

setup(
    name='fitscan',
    version=_version,
    author='The fitscan developers',
    description='Likelihood scans of test sources in binned gamma-ray counts maps',
    license='BSD',
    packages=find_packages(),
    package_data={'fitscan': ['config/*.yaml']},
    include_package_data=True,
    classifiers=[
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: BSD License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Topic :: Scientific/Engineering :: Astronomy',
        'Development Status :: 4 - Beta',
    ],
    scripts=[],
    install_requires=[
        'numpy >= 1.6.1',
        'astropy >= 1.2.1',
        'scipy >= 0.14',
        'pyyaml',
        'healpy',
    ],
    extras_require=dict(
        test=['pytest'],
    ),
)
