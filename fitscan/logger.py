# Licensed under a 3-clause BSD style license - see LICENSE.rst
import copy
import logging
import logging.config
from fitscan.config import load_yaml

LOG_FORMAT = '%(asctime)s %(levelname)-8s %(name)s.%(funcName)s(): %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Chatter levels from quietest to most verbose
_CHATTER_LEVELS = [logging.CRITICAL, logging.ERROR, logging.WARNING,
                   logging.INFO, logging.DEBUG]


def log_level(level):
    """Convert a chatter level (0-4) to the corresponding python
    logging level.  Out-of-range values are clipped."""
    level = min(max(int(level), 0), len(_CHATTER_LEVELS) - 1)
    return _CHATTER_LEVELS[level]


def load_logging_config(path='logging.yaml'):
    """Load a logging configuration in `logging.config.dictConfig`
    format.  By default the packaged ``logging.yaml`` is used."""
    return load_yaml(path)


class Logger(object):
    """Helper functions for creating and configuring instances of the
    built-in logger class."""

    @staticmethod
    def setup(config=None, logfile=None):
        """Set up the default configuration of the package loggers.
        Once this method is called all loggers under the ``fitscan``
        namespace inherit this configuration.

        Parameters
        ----------
        config : dict
            Logging configuration in `logging.config.dictConfig`
            format.  If None the packaged ``logging.yaml`` is used.

        logfile : str
            Path to a log file.  If None no file handler is attached.
        """

        if config is None:
            config = load_logging_config()
        config = copy.deepcopy(config)

        handlers = config.setdefault('handlers', {})
        if logfile:
            for name, h in handlers.items():
                if 'file_handler' in name:
                    h['filename'] = logfile
            for name, lcfg in config.get('loggers', {}).items():
                lcfg.setdefault('handlers', [])
                lcfg['handlers'] += [k for k in handlers
                                     if 'file_handler' in k]
        else:
            for name in [k for k in handlers if 'file_handler' in k]:
                handlers.pop(name)

        logging.config.dictConfig(config)

    @staticmethod
    def get(name, logfile=None, loglevel=logging.DEBUG):
        """Get a logger that does not propagate to the root logger.

        On the first call for ``name`` a console handler at level
        ``loglevel`` is attached, preceded by a file handler recording
        every message when ``logfile`` is given.  Later calls only
        update the level of the console handler.
        """

        logger = logging.getLogger(name)
        logger.propagate = False
        logger.setLevel(logging.DEBUG)

        if logger.handlers:
            logger.handlers[-1].setLevel(loglevel)
            return logger

        handlers = []
        if logfile is not None:
            if not logfile.endswith('.log'):
                logfile += '.log'
            handlers += [(logging.FileHandler(logfile), logging.DEBUG)]
        handlers += [(logging.StreamHandler(), loglevel)]

        formatter = logging.Formatter(LOG_FORMAT, LOG_DATEFMT)
        for h, level in handlers:
            h.setLevel(level)
            h.setFormatter(formatter)
            logger.addHandler(h)

        return logger
