# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Scans of the likelihood of a test source over a grid of sky
positions producing TS maps, bin-by-bin spectra and likelihood
versus normalization profiles."""
import os
import warnings
import numpy as np
from scipy.optimize import minimize
from astropy.table import Table, Column
from fitscan import defaults
from fitscan import utils
from fitscan import wcs_utils
from fitscan.config import ConfigSchema, Configurable
from fitscan.logger import Logger, log_level
from fitscan.timing import Timer
from fitscan.fitcache import FitCache, FIT_NO_FREE_PARS
from fitscan.srcmap_cache import TestSourceModelCache
from fitscan.grid import WcsScanGrid, HpxScanGrid
from fitscan.hist import HistND
from fitscan.exceptions import ProjectionError, SingularCovarianceError

STATUS_NOT_EVALUATED = -99
STATUS_PROJECTION_ERROR = 4

MAP_HISTS = ['TS_MAP', 'N_MAP', 'ERRP_MAP', 'ERRN_MAP', 'UL_MAP', 'NLL_MAP']
CUBE_HISTS = ['TSCUBE', 'N_CUBE', 'ERRPCUBE', 'ERRNCUBE', 'ULCUBE', 'NLL_CUBE']
SCAN_HISTS = ['NORMSCAN', 'NLL_SCAN']


def fit_general(fitcache, use_prior=False, method='L-BFGS-B'):
    """Maximize the log-likelihood of the current configuration of a
    fit cache with `scipy.optimize.minimize`.  Normalizations are
    bounded below by zero.  The result is installed as the current
    parameters of the cache."""

    pars0 = fitcache.current_pars
    if not len(pars0):
        return None

    def fn(pars):
        loglike, grad, hess = fitcache.eval_loglike(pars, use_prior,
                                                    derivs=True)
        return -loglike, -grad

    res = minimize(fn, pars0, jac=True, method=method,
                   bounds=[(0.0, None)] * len(pars0))
    fitcache.set_current_pars(np.clip(res.x, 0.0, None))
    return res


class ScanDriver(Configurable):
    """Driver for likelihood scans of a test source.

    Parameters
    ----------
    like : `~fitscan.likelihood.BinnedLikelihood`
        Binned-likelihood provider for the ROI.

    source_map_fn : callable
        Function taking a `~astropy.coordinates.SkyCoord` and returning
        the model cube of the test source at unit normalization at
        that position.

    grid : `~fitscan.grid.ScanGrid`
        Grid of test source positions.  By default the pixel centers
        of the map of ``like`` or, if ``grid.hpx_nside`` is set, the
        HEALPix pixels within ``grid.hpx_radius`` of the map center.

    config : dict or str
        Configuration dictionary or path to a YAML configuration file.
    """

    defaults = {'tscube': defaults.tscube,
                'optimizer': defaults.optimizer,
                'grid': defaults.grid,
                'logging': defaults.logging,
                'fileio': defaults.fileio}

    def __init__(self, like, source_map_fn, grid=None, config=None,
                 **kwargs):
        super(ScanDriver, self).__init__(config, **kwargs)

        self.logger = Logger.get(
            utils.join_strings([self.config['logging']['prefix'],
                                self.__class__.__name__]),
            self.config['fileio']['logfile'],
            log_level(self.config['logging']['chatter']))
        self.print_config(self.logger)

        self._like = like
        self._source_map_fn = source_map_fn
        self._grid = self._create_grid() if grid is None else grid

        self._fitcache = None
        self._tscache = None
        self._null_loglike = None
        self._bkg_scales = None
        self._bkg_free = None
        self._scan_data = {}
        self._nnorm = 0

    def _create_grid(self):

        nside = self.config['grid']['hpx_nside']
        if nside is None:
            return WcsScanGrid.create_from_like(self._like)

        nx, ny = self._like.npix_xy
        skydir = wcs_utils.pix_to_skydir((nx - 1.0) / 2., (ny - 1.0) / 2.,
                                         self._like.wcs)
        coordsys = wcs_utils.get_coordsys(self._like.wcs)
        return HpxScanGrid.create(skydir, nside,
                                  self.config['grid']['hpx_radius'],
                                  coordsys, self.config['grid']['hpx_nest'])

    @property
    def like(self):
        return self._like

    @property
    def grid(self):
        return self._grid

    @property
    def fitcache(self):
        return self._fitcache

    @property
    def test_source_cache(self):
        return self._tscache

    @property
    def null_loglike(self):
        return self._null_loglike

    @property
    def scan_data(self):
        return self._scan_data

    @property
    def n_pixels(self):
        return self._grid.npix

    @property
    def n_ebins(self):
        return self._like.nebins

    @property
    def n_norms(self):
        return self._nnorm

    def run_tsmap(self, **kwargs):
        """Generate a TS map with broadband fits of the test source at
        every grid position.  Accepts the same options as
        `run_tscube`."""
        kwargs['do_sed'] = False
        kwargs['nnorm'] = 0
        return self.run_tscube(**kwargs)

    def run_tscube(self, **kwargs):
        """Generate a TS cube.  At every grid position the test source
        is fit over the full energy range (broadband) and optionally in
        each energy bin with a scan of the likelihood versus
        normalization.

        Parameters
        ----------
        do_sed : bool
           Compute the energy bin-by-bin fits.

        nnorm : int
           Number of points in the likelihood v. normalization scan.

        norm_sigma : float
           Number of sigma to use for the scan range.

        cov_scale_bb : float
           Scale factor applied to the covariance of the baseline fit
           to form a prior on the background in the broadband fits.
           Disabled if negative.

        cov_scale : float
           Scale factor applied to the covariance of the broadband fit
           to form a prior on the background in the bin-by-bin fits.
           If negative the background is fixed.

        tol : float
           Criteria for fit convergence (estimated vertical distance
           to min < tol ).

        tol_type : int
           Absolute (0) or relative (1) criteria for convergence.

        max_iter : int
           Maximum number of iterations for the Newton's method fitter.

        remake_test_source : bool
           If true, recomputes the test source image at every
           position (otherwise just shifts it).

        st_scan_level : int
           Use the general-purpose optimizer for the baseline fit (1)
           or the baseline and broadband fits (2).

        Returns
        -------
        o : dict
           Dictionary with the scan histograms and a table of the
           results.
        """

        schema = ConfigSchema(self.defaults['tscube'])
        config = schema.create_config(self.config['tscube'], **kwargs)

        self.logger.info('Generating TS cube')
        timer = Timer.create(start=True)

        nnorm = config['nnorm'] if config['do_sed'] else 0
        self._nnorm = nnorm

        self._build_fitcache(config)
        if not config['remake_test_source']:
            self._build_test_source_cache()
        self._init_hists(config['do_sed'], nnorm)
        self._baseline_fit(config)

        skydirs = self._grid.get_pixel_skydirs()
        npix = self._grid.npix
        for ipix in range(npix):

            skydir = skydirs[ipix]
            try:
                self._set_test_source_dir(skydir, config)
            except ProjectionError as e:
                self.logger.warning('Skipping grid point %i: %s', ipix, e)
                self._scan_data['TSMAP_OK'][ipix] = STATUS_PROJECTION_ERROR
                if config['do_sed']:
                    self._scan_data['TSCUBE_OK'][ipix] = STATUS_PROJECTION_ERROR
                continue

            self._fit_test_source_broadband(ipix, config)
            if config['do_sed']:
                self._sed_binned_newton(ipix, config)

            self.logger.debug('Grid point %i/%i: TS = %.2f', ipix + 1, npix,
                              self._scan_data['TS_MAP'][ipix])

        timer.stop()
        self.logger.info('Finished TS cube')
        self.logger.info('Execution time: %.2f s', timer.elapsed_time)

        o = self.make_output(config)

        if self.config['fileio']['write_npy']:
            outdir = self.config['fileio']['outdir']
            outdir = os.getcwd() if outdir is None else outdir
            o['file'] = self.write_npy(utils.format_filename(outdir,
                                                             'tscube'))

        return o

    def _build_fitcache(self, config):

        self._fitcache = FitCache.create_from_like(
            self._like,
            tol=config['tol'],
            max_iter=config['max_iter'],
            tol_type=config['tol_type'],
            init_lambda=config['init_lambda'],
            use_reduced=config['use_reduced'])

        self._bkg_free = np.array([self._like.is_free(name) for name
                                   in self._fitcache.names], dtype=bool)

    def _build_test_source_cache(self):
        self._tscache = TestSourceModelCache.create_from_like(
            self._like, self._source_map_fn,
            interp=self.config['grid']['interp'])

    def _init_hists(self, do_sed, nnorm):

        npix = self._grid.npix
        nebins = self._like.nebins
        hists = {}

        for name in MAP_HISTS:
            hists[name] = HistND.create(name, npix)
        hists['TSMAP_OK'] = HistND.create('TSMAP_OK', npix, dtype=int,
                                          fill_value=STATUS_NOT_EVALUATED)

        if do_sed:
            for name in CUBE_HISTS:
                hists[name] = HistND.create(name, npix, nebins)
            hists['TSCUBE_OK'] = HistND.create('TSCUBE_OK', npix, nebins,
                                               dtype=int,
                                               fill_value=STATUS_NOT_EVALUATED)

        if do_sed and nnorm > 0:
            for name in SCAN_HISTS:
                hists[name] = HistND.create(name, npix, nebins, nnorm)

        self._scan_data = hists

    def _baseline_fit(self, config):
        """Fit the background without the test source.  The result
        defines the null hypothesis for the broadband fits."""

        fc = self._fitcache
        fc.set_energy_bin(-1)
        fc.clear_priors()
        fc.refactor_model(self._bkg_free, np.ones(fc.n_bkg_model), False)

        if config['st_scan_level'] >= 1:
            fit_general(fc, method=self.config['optimizer']['st_method'])

        o = fc.fit()
        if not o['fit_success'] and o['fit_status'] != FIT_NO_FREE_PARS:
            self.logger.warning('Baseline fit did not converge: status %i',
                                o['fit_status'])

        self._null_loglike = o['loglike']
        self._bkg_scales = fc.get_par_scales()[0]
        self.logger.info('Baseline fit: loglike = %.3f', self._null_loglike)

        if config['cov_scale_bb'] > 0 and fc.n_free_current:
            if o['degenerate']:
                self.logger.warning('Baseline covariance is singular. '
                                    'Broadband fits will not use a prior.')
            else:
                try:
                    fc.build_priors_from_current(cov_scale=config['cov_scale_bb'])
                except SingularCovarianceError as e:
                    self.logger.warning('Failed to build prior: %s', e)

        return o

    def _set_test_source_dir(self, skydir, config):

        if config['remake_test_source']:
            self._fitcache.set_test_source_model(self._source_map_fn(skydir))
        else:
            self._fitcache.shift_test_source_model(self._tscache, skydir)

    def _fit_test_source_broadband(self, ipix, config):

        fc = self._fitcache
        hists = self._scan_data

        fc.set_energy_bin(-1)
        fc.clear_priors(bkg=False, test=True)
        fc.refactor_model(self._bkg_free, self._bkg_scales, True,
                          init_norm=0.0)
        use_prior = fc.prior_bkg is not None

        if config['st_scan_level'] >= 2:
            fit_general(fc, use_prior, self.config['optimizer']['st_method'])

        o = fc.fit(use_prior=use_prior)
        norm, ts, errp, errn, ul = self._test_source_results(
            o, self._null_loglike, config)

        hists['TS_MAP'][ipix] = ts
        hists['N_MAP'][ipix] = norm
        hists['ERRP_MAP'][ipix] = errp
        hists['ERRN_MAP'][ipix] = errn
        hists['UL_MAP'][ipix] = ul
        hists['NLL_MAP'][ipix] = -o['loglike']
        hists['TSMAP_OK'][ipix] = o['fit_status']
        return o

    def _sed_binned_newton(self, ipix, config):
        """Fit the test source in each energy bin starting from the
        broadband fit.  The background is either fixed at its
        broadband values or left free with a prior derived from the
        broadband covariance."""

        fc = self._fitcache
        hists = self._scan_data

        pars_bb = fc.current_pars
        cov_bb = fc.current_cov
        bkg_scales, norm_bb = fc.get_par_scales()

        use_prior = False
        if config['cov_scale'] > 0 and not fc.degenerate and cov_bb is not None:
            fc.refactor_model(self._bkg_free, bkg_scales, True,
                              init_norm=norm_bb)
            mask = np.ones(fc.n_free_current, dtype=bool)
            mask[fc.test_source_index] = False
            try:
                fc.build_priors_from_external(pars_bb,
                                              cov_bb * config['cov_scale'],
                                              mask)
                use_prior = True
            except SingularCovarianceError as e:
                self.logger.debug('Fixing background: %s', e)

        if not use_prior:
            fc.refactor_model(np.zeros(fc.n_bkg_model, dtype=bool),
                              bkg_scales, True, init_norm=norm_bb)

        pars0 = fc.current_pars
        for ebin in range(self._like.nebins):

            fc.set_energy_bin(ebin)
            fc.set_current_pars(pars0)
            o = fc.fit(use_prior=use_prior)
            hists['TSCUBE_OK'][ipix, ebin] = o['fit_status']
            if fc.current_cov is None:
                continue

            loglike_null = fc.profile_loglike(0.0, use_prior=use_prior)
            norm, ts, errp, errn, ul = self._test_source_results(
                o, loglike_null, config)

            hists['TSCUBE'][ipix, ebin] = ts
            hists['N_CUBE'][ipix, ebin] = norm
            hists['ERRPCUBE'][ipix, ebin] = errp
            hists['ERRNCUBE'][ipix, ebin] = errn
            hists['ULCUBE'][ipix, ebin] = ul
            hists['NLL_CUBE'][ipix, ebin] = -o['loglike']

            if self._nnorm > 0 and np.isfinite(errp) and np.isfinite(errn):
                norms, loglikes = fc.scan_normalization(
                    self._nnorm, config['norm_sigma'], errp, errn,
                    profile=config['profile_scan'], use_prior=use_prior)
                hists['NORMSCAN'][ipix, ebin] = norms
                hists['NLL_SCAN'][ipix, ebin] = -loglikes

        fc.set_energy_bin(-1)

    def _test_source_results(self, o, loglike_null, config):

        fc = self._fitcache
        itest = fc.test_source_index
        norm = o['values'][itest]

        if norm > 0:
            ts = max(2.0 * (o['loglike'] - loglike_null), 0.0)
        else:
            ts = 0.0

        dlnl = utils.twosided_cl_to_dlnl(config['cl'])
        dlnl_ul = utils.onesided_cl_to_dlnl(config['ul_confidence'])
        errp, errn = fc.estimate_uncertainty(dlnl)
        ul = norm + fc.estimate_uncertainty(dlnl_ul)[0]
        return norm, ts, errp, errn, ul

    def ts_map(self):
        """Return the broadband TS values with the shape of the scan
        grid."""
        return self._scan_data['TS_MAP'].reshape_pix(self._grid.shape)

    def make_ebounds_table(self):

        energies = self._like.energies
        if np.all(energies > 0):
            ectr = np.exp(utils.edge_to_center(np.log(energies)))
        else:
            ectr = utils.edge_to_center(energies)

        return Table([Column(name='e_min', data=energies[:-1]),
                      Column(name='e_ref', data=ectr),
                      Column(name='e_max', data=energies[1:])])

    def make_table(self):
        """Create a table with one row per grid position."""

        hists = self._scan_data
        skydirs = self._grid.get_pixel_skydirs()

        cols = [Column(name='pix', data=np.arange(self._grid.npix)),
                Column(name='ra', data=skydirs.icrs.ra.deg, unit='deg'),
                Column(name='dec', data=skydirs.icrs.dec.deg, unit='deg'),
                Column(name='fit_ts', data=hists['TS_MAP'].data),
                Column(name='fit_norm', data=hists['N_MAP'].data),
                Column(name='fit_norm_errp', data=hists['ERRP_MAP'].data),
                Column(name='fit_norm_errn', data=hists['ERRN_MAP'].data),
                Column(name='fit_norm_err',
                       data=0.5 * (hists['ERRP_MAP'].data +
                                   hists['ERRN_MAP'].data)),
                Column(name='fit_norm_ul', data=hists['UL_MAP'].data),
                Column(name='fit_loglike', data=-hists['NLL_MAP'].data),
                Column(name='fit_status', data=hists['TSMAP_OK'].data)]

        if 'TSCUBE' in hists:
            cols += [Column(name='ts', data=hists['TSCUBE'].data),
                     Column(name='norm', data=hists['N_CUBE'].data),
                     Column(name='norm_errp', data=hists['ERRPCUBE'].data),
                     Column(name='norm_errn', data=hists['ERRNCUBE'].data),
                     Column(name='norm_err',
                            data=0.5 * (hists['ERRPCUBE'].data +
                                        hists['ERRNCUBE'].data)),
                     Column(name='norm_ul', data=hists['ULCUBE'].data),
                     Column(name='loglike', data=-hists['NLL_CUBE'].data),
                     Column(name='bin_status', data=hists['TSCUBE_OK'].data)]

        if 'NORMSCAN' in hists:
            loglike = -hists['NLL_SCAN'].data
            with warnings.catch_warnings():
                warnings.simplefilter('ignore')
                dloglike = loglike - np.nanmax(loglike, axis=2)[..., np.newaxis]
            cols += [Column(name='norm_scan', data=hists['NORMSCAN'].data),
                     Column(name='dloglike_scan', data=dloglike)]

        return Table(cols)

    def make_output(self, config=None):

        o = {'name': 'tscube',
             'config': config,
             'null_loglike': self._null_loglike,
             'ts': self.ts_map(),
             'norm': self._scan_data['N_MAP'].reshape_pix(self._grid.shape),
             'scan_data': dict((k, v.data) for k, v in self._scan_data.items()),
             'table': self.make_table(),
             'ebounds': self.make_ebounds_table(),
             'file': None}
        return o

    def write_npy(self, outfile):
        """Write the scan histograms to a numpy file."""
        outfile = os.path.splitext(outfile)[0] + '.npy'
        o = {'null_loglike': self._null_loglike,
             'energies': self._like.energies}
        o.update(dict((k, v.data) for k, v in self._scan_data.items()))
        np.save(outfile, o)
        self.logger.info('Writing %s', outfile)
        return outfile
