# Licensed under a 3-clause BSD style license - see LICENSE.rst
import os
import pytest
import yaml
from fitscan import config
from fitscan import defaults
from fitscan import utils

region_default_config = {
    'radius': (1.0, '', float),
    'center': (None, '', list),
    'extra': (None, '', dict)}

default_config = {
    'optimizer': defaults.optimizer,
    'grid': defaults.grid,
    'fileio': defaults.fileio,
    'region': region_default_config,
    'names': (None, '', list),
    'weights': ({'a': 1.0}, '', dict),
}


class ScanConfigurable(config.Configurable):
    defaults = default_config

    def __init__(self, config=None, **kwargs):
        super(ScanConfigurable, self).__init__(config, **kwargs)

    def method(self, **kwargs):
        schema = config.ConfigSchema(self.defaults['optimizer'],
                                     region=self.defaults['region'])
        schema.add_option('nstep', 5)
        schema.add_option('refit', False)
        cfg = utils.create_dict(self.config['optimizer'],
                                region=self.config['region'])
        return schema.create_config(cfg, **kwargs)


def test_default_config():

    cls = ScanConfigurable()
    assert cls.config['optimizer']['tol'] == 1E-3
    assert cls.config['optimizer']['max_iter'] == 30
    assert cls.config['grid']['interp'] == 'nearest'
    assert cls.config['grid']['hpx_nside'] is None
    assert cls.config['region']['center'] == []
    assert cls.config['region']['extra'] == {}
    assert cls.config['names'] == []
    assert cls.config == ScanConfigurable.get_config()


def test_class_config():

    cfg = {'optimizer': {'tol': 1E-5, 'max_iter': 10.0},
           'grid': {'hpx_nside': 64},
           'weights': {'b': 2.0},
           'names': 'galdiff'}

    cls = ScanConfigurable(cfg)
    assert cls.config['optimizer']['tol'] == 1E-5
    assert cls.config['optimizer']['max_iter'] == 10
    assert isinstance(cls.config['optimizer']['max_iter'], int)
    assert cls.config['optimizer']['tol_type'] == 0
    assert cls.config['grid']['hpx_nside'] == 64
    assert cls.config['weights'] == {'a': 1.0, 'b': 2.0}
    assert cls.config['names'] == ['galdiff']

    # Keyword arguments take precedence
    cfg['names'] = ['galdiff']
    cls = ScanConfigurable(cfg, optimizer={'tol': 1E-2},
                           names=['galdiff', 'isodiff'])
    assert cls.config['optimizer']['tol'] == 1E-2
    assert cls.config['optimizer']['max_iter'] == 10
    assert cls.config['names'] == ['galdiff', 'isodiff']


def test_method_config():

    cls = ScanConfigurable({'optimizer': {'tol': 1E-4}})

    outcfg = cls.method()
    assert outcfg['tol'] == 1E-4
    assert outcfg['region']['radius'] == 1.0
    assert outcfg['nstep'] == 5
    assert outcfg['refit'] is False

    outcfg = cls.method(tol=1E-6, refit=True, region={'radius': 2.0})
    assert outcfg['tol'] == 1E-6
    assert outcfg['refit'] is True
    assert outcfg['region']['radius'] == 2.0


def test_config_validation():

    cfg = {'optimizer': {'tol': 1E-5, 'invalid': 1.0}}

    cls = ScanConfigurable(cfg, validate=False)
    assert 'invalid' not in cls.config['optimizer']

    with pytest.raises(KeyError):
        ScanConfigurable(cfg)

    with pytest.raises(KeyError):
        ScanConfigurable(invalid=1.0)

    with pytest.raises(TypeError):
        ScanConfigurable({'optimizer': {'tol': {}}})

    with pytest.raises(TypeError):
        ScanConfigurable({'grid': {'hpx_nest': [1]}})

    with pytest.raises(TypeError):
        ScanConfigurable({'region': 1.0})

    cls = ScanConfigurable()
    with pytest.raises(KeyError):
        cls.method(invalid=3.0)

    with pytest.raises(KeyError):
        cls.method(region={'invalid': 3.0})

    with pytest.raises(TypeError):
        cls.method(region={'radius': {}})


def test_config_file(tmpdir):

    path = os.path.join(str(tmpdir), 'config.yaml')
    with open(path, 'w') as f:
        yaml.dump({'optimizer': {'tol': 1E-4}, 'grid': {'interp': 'linear'}},
                  f)

    cls = ScanConfigurable(path)
    assert cls.configdir == str(tmpdir)
    assert cls.config['optimizer']['tol'] == 1E-4
    assert cls.config['grid']['interp'] == 'linear'
    assert cls.config['fileio']['outdir'] == str(tmpdir)

    outpath = os.path.join(str(tmpdir), 'out.yaml')
    cls.write_config(outpath)
    cls2 = ScanConfigurable(outpath)
    assert cls2.config['optimizer'] == cls.config['optimizer']

    with pytest.raises(IOError):
        ScanConfigurable(os.path.join(str(tmpdir), 'missing.yaml'))

    with pytest.raises(TypeError):
        ScanConfigurable(1.0)


def test_load_package_config():

    cfg = config.load_yaml('logging.yaml')
    assert 'handlers' in cfg
    assert 'fitscan' in cfg['loggers']
