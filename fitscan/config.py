# Licensed under a 3-clause BSD style license - see LICENSE.rst
"""Schema-driven configuration dictionaries.

A schema is a dictionary mapping each option name to a tuple of
(default value, help string, type) or, for a section, to a nested
schema dictionary.
"""
import os
import copy
import yaml
import fitscan
from fitscan import utils


def _is_section(item):
    return isinstance(item, (dict, ConfigSchema))


def _option_type(item):
    otype = item[2]
    if isinstance(otype, tuple):
        otype = otype[0]
    return otype


def create_default_config(schema):
    """Create a configuration dictionary holding the default value of
    every option of ``schema``."""

    o = {}
    for key, item in schema.items():

        if _is_section(item):
            o[key] = create_default_config(item)
            continue

        if not isinstance(item, tuple):
            raise TypeError('Unrecognized type for schema element %s: %s'
                            % (key, type(item)))

        value = item[0]
        otype = _option_type(item)
        if value is None and otype in (list, dict):
            value = otype()
        o[key] = copy.deepcopy(value)

    return o


def cast_config(config, schema):
    """Convert the options of ``config`` in place to the types declared
    in ``schema``.  Unknown keys and None values are left untouched."""

    for key, item in config.items():

        if key not in schema:
            continue

        if _is_section(schema[key]):
            if isinstance(item, dict):
                cast_config(item, schema[key])
            continue

        otype = _option_type(schema[key])
        if item is None or otype is None:
            continue

        if utils.isstr(item) and otype == list:
            config[key] = [item]
        elif otype in (list, dict) or isinstance(item, (list, dict)):
            continue
        else:
            config[key] = otype(item)


def validate_option(opt_name, opt_val, schema_type):
    """Check the type of an option.  Only container and boolean types
    are checked strictly since numeric types are freely cast."""

    if opt_val is None:
        return

    strict = (schema_type in (list, dict, bool) or
              type(opt_val) in (list, dict, bool))
    if strict and type(opt_val) is not schema_type:
        raise TypeError('Wrong type for %s: %s (expected %s)' %
                        (opt_name, type(opt_val), schema_type))


def validate_config(config, schema, section=None):
    """Check that every key of ``config`` is defined in ``schema`` and
    holds a value of the declared type.

    Raises
    ------
    KeyError
        An option is not defined in the schema.

    TypeError
        An option or section has the wrong type.
    """

    for key, item in config.items():

        if key not in schema:
            if section is None:
                raise KeyError('Invalid configuration key: %s' % key)
            raise KeyError('Invalid configuration key: %s (section : %s)'
                           % (key, section))

        if _is_section(schema[key]):
            if not isinstance(item, dict):
                raise TypeError('Wrong type for configuration section %s: %s'
                                % (key, type(item)))
            validate_config(item, schema[key], key)
        else:
            validate_option(key, item, _option_type(schema[key]))


def update_config(config, config_in, schema):
    """Return a copy of ``config`` updated with the options of
    ``config_in`` that are defined in ``schema``.  Options of type
    dict are merged rather than replaced."""

    o = copy.deepcopy(config)
    for key, item in schema.items():

        if key not in config_in:
            continue

        if _is_section(item):
            o[key] = update_config(config.get(key, {}), config_in[key] or {},
                                   item)
        elif _option_type(item) is dict:
            o[key] = utils.merge_dict(config[key], config_in[key],
                                      add_new_keys=True)
        else:
            o[key] = copy.deepcopy(config_in[key])

    return o


def load_yaml(path):
    """Load a YAML configuration file.  Relative paths that do not
    exist are looked up in the package configuration directory."""

    if not os.path.isfile(path):
        pkgpath = os.path.join(fitscan.PACKAGE_ROOT, 'config', path)
        if not os.path.isfile(pkgpath):
            raise IOError('Invalid path to configuration file: %s' % path)
        path = pkgpath

    with open(path) as f:
        return yaml.safe_load(f) or {}


class ConfigSchema(object):
    """Configuration schema with methods to build validated
    configuration dictionaries from it.

    Parameters
    ----------
    options : dict
        Schema dictionary.

    kwargs : dict
        Additional sections or options.
    """

    def __init__(self, options=None, **kwargs):
        options = {} if options is None else options
        self._options = utils.merge_dict(options, kwargs, add_new_keys=True)

    def add_option(self, name, default_value, helpstr='', otype=None):
        if otype is None:
            otype = type(default_value)
        self._options[name] = (default_value, helpstr, otype)

    def add_section(self, name, section):
        self._options[name] = section

    def create_config(self, config=None, validate=True, **kwargs):
        """Create a configuration dictionary from the schema defaults
        overridden first by ``config`` and then by ``kwargs``.  With
        ``validate`` unknown keys and type mismatches raise, otherwise
        unknown keys are dropped."""

        config = {} if config is None else config
        config = utils.merge_dict(config, kwargs, add_new_keys=True)
        cast_config(config, self)
        if validate:
            validate_config(config, self)
        return update_config(create_default_config(self), config, self)

    def items(self):
        return self._options.items()

    def __contains__(self, key):
        return key in self._options

    def __getitem__(self, key):
        return self._options[key]

    def __setitem__(self, key, value):
        self._options[key] = value


class Configurable(object):
    """Base class for objects configured from a schema.  Subclasses
    declare the schema in the ``defaults`` class attribute.

    Parameters
    ----------
    config : dict or str
        Configuration dictionary or path to a YAML file.  When a file
        is given an unset ``fileio.outdir`` defaults to its
        directory.
    """

    defaults = {}

    def __init__(self, config, **kwargs):

        self._configdir = None

        if config is None or isinstance(config, dict):
            config_dict = config
        elif utils.isstr(config):
            if not os.path.isfile(config):
                raise IOError('Invalid path to configuration file: %s'
                              % config)
            self._configdir = os.path.abspath(os.path.dirname(config))
            config_dict = load_yaml(config)
        else:
            raise TypeError('Invalid config argument: %s' % type(config))

        self.configure(config_dict, **kwargs)

        fileio = self._config.get('fileio')
        if self._configdir and fileio is not None and fileio['outdir'] is None:
            fileio['outdir'] = self._configdir

    def configure(self, config, **kwargs):
        self._config = self.schema.create_config(config, **kwargs)

    @classmethod
    def get_config(cls):
        """Return the default configuration dictionary of this class."""
        return create_default_config(cls.defaults)

    @property
    def config(self):
        return self._config

    @property
    def schema(self):
        return ConfigSchema(self.defaults)

    @property
    def configdir(self):
        return self._configdir

    def write_config(self, outfile):
        """Write the configuration dictionary to a YAML file."""
        utils.write_yaml(self.config, outfile, default_flow_style=False)

    def print_config(self, logger, loglevel=None):
        cfgstr = yaml.dump(utils.tolist(self.config),
                           default_flow_style=False)
        if loglevel is None:
            logger.debug('Configuration:\n' + cfgstr)
        else:
            logger.log(loglevel, 'Configuration:\n' + cfgstr)
