"""
Utilities for obtaining a configuration for repository components and for setting up logging.

A configuration is a (possibly nested) dictionary of parameters.  It is typically loaded from a
YAML or JSON file (see :py:func:`load_from_file`) or fetched from a URL (see
:py:func:`resolve_configuration`); the parameters for a component are then extracted from it and
passed to the component's constructor.  Default values are combined with overriding values via
:py:func:`merge_config`.
"""
import os, sys, logging, json
from collections.abc import Mapping
from copy import deepcopy
from urllib.parse import urlparse

import yaml
import requests

from . import ScholarSphereException

__all__ = [ "ConfigurationException", "load_from_file", "resolve_configuration", "merge_config",
            "hget", "configure_log", "NORMAL", "global_logdir", "global_logfile" ]

NORMAL = 15     # a log level between DEBUG and INFO
logging.addLevelName(NORMAL, "NORMAL")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
DEF_LOGFILE = "scholarsphere.log"
CONFIG_ENV_VAR = "SCHOLARSPHERE_CONFIG"

global_logdir = None
global_logfile = None
_log_handler = None

class ConfigurationException(ScholarSphereException):
    """
    a class indicating an error in the configuration of a repository component
    """
    def __init__(self, msg=None, cause=None, sys=None):
        if not msg and not cause:
            msg = "Unknown configuration error"
        super(ConfigurationException, self).__init__(msg, cause, sys)

def load_from_file(configfile: str) -> Mapping:
    """
    read the configuration from the given file and return it as a dictionary.  The file can be
    either in JSON or YAML format; the format is determined by the file extension (``.json``
    for JSON; anything else is assumed to be YAML).
    :raises ConfigurationException:  if the file cannot be read or parsed
    """
    try:
        with open(configfile) as fd:
            if configfile.endswith('.json'):
                out = json.load(fd)
            else:
                out = yaml.safe_load(fd)
    except (OSError, ValueError, yaml.YAMLError) as ex:
        raise ConfigurationException("%s: Unable to load configuration: %s" % (configfile, str(ex)),
                                     cause=ex)
    if out is None:
        out = {}
    if not isinstance(out, Mapping):
        raise ConfigurationException(configfile+": configuration is not an object")
    return out

def resolve_configuration(location: str = None, timeout: float = 10.0) -> Mapping:
    """
    return the configuration data found at the given location.  The location may be a local file
    path, a ``file:`` URL, or an ``http(s):`` URL.  If the location is not given, the value of the
    ``SCHOLARSPHERE_CONFIG`` environment variable is used.
    """
    if not location:
        location = os.environ.get(CONFIG_ENV_VAR)
    if not location:
        raise ConfigurationException("No configuration location given (and %s not set)" %
                                     CONFIG_ENV_VAR)

    url = urlparse(location)
    if url.scheme in ("http", "https"):
        try:
            resp = requests.get(location, timeout=timeout)
        except requests.RequestException as ex:
            raise ConfigurationException("%s: Failed to retrieve configuration: %s" %
                                         (location, str(ex)), cause=ex)
        if resp.status_code >= 300:
            raise ConfigurationException("%s: Failed to retrieve configuration: %s %s" %
                                         (location, resp.status_code, resp.reason))
        try:
            if url.path.endswith(".json"):
                return resp.json()
            return yaml.safe_load(resp.text) or {}
        except (ValueError, yaml.YAMLError) as ex:
            raise ConfigurationException("%s: Unparseable configuration: %s" % (location, str(ex)),
                                         cause=ex)

    if url.scheme == "file":
        location = url.path
    elif url.scheme and len(url.scheme) > 1:
        raise ConfigurationException("%s: unsupported configuration URL scheme" % location)
    return load_from_file(location)

def merge_config(primary: Mapping, defconf: Mapping) -> Mapping:
    """
    merge the parameters from two configuration dictionaries.  Values from the ``primary``
    dictionary override those in ``defconf``; dictionaries found as values in both are merged
    recursively.  The ``defconf`` dictionary is updated in place and returned.
    """
    if not primary:
        return defconf
    for key, val in primary.items():
        if isinstance(val, Mapping) and isinstance(defconf.get(key), Mapping):
            defconf[key] = merge_config(val, dict(defconf[key]))
        else:
            defconf[key] = deepcopy(val)
    return defconf

def hget(config: Mapping, path: str, default=None):
    """
    return the value of a hierarchical parameter given as a dot-delimited name (e.g.
    ``"store.factory"``), or ``default`` if it is not set.
    """
    out = config
    for step in path.split('.'):
        if not isinstance(out, Mapping) or step not in out:
            return default
        out = out[step]
    return out

def configure_log(logfile: str = None, level: int = None, format: str = None, config: Mapping = None,
                  addstderr: bool = False):
    """
    configure the root logger to send messages to a file.

    :param str logfile:  the path to the log file to write to.  If not absolute, it will be taken to
                         be relative to the ``logdir`` configuration parameter (or the ``working_dir``
                         parameter, if that is not set).  If not given, the ``logfile`` configuration
                         parameter is used, and failing that, "scholarsphere.log".
    :param int   level:  the level to set on the log; if not given, the ``loglevel`` configuration
                         parameter is used, which defaults to NORMAL.
    :param str  format:  the format for log messages
    :param dict config:  a configuration containing the log parameters
    :param bool addstderr:  if True, also send messages at the chosen level to standard error
    """
    global global_logdir, global_logfile, _log_handler
    if config is None:
        config = {}
    if not logfile:
        logfile = config.get('logfile', DEF_LOGFILE)

    if not os.path.isabs(logfile):
        logdir = config.get('logdir', config.get('working_dir'))
        if not logdir:
            logdir = os.getcwd()
        logfile = os.path.join(logdir, logfile)
    global_logdir = os.path.dirname(logfile)
    global_logfile = logfile
    if not os.path.exists(global_logdir):
        os.makedirs(global_logdir)

    if level is None:
        level = config.get('loglevel', NORMAL)
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                raise ConfigurationException("loglevel: unrecognized level name: "+
                                             str(config.get('loglevel')))
    if not format:
        format = config.get('logformat', LOG_FORMAT)

    root = logging.getLogger()
    if _log_handler:
        root.removeHandler(_log_handler)
        _log_handler.close()
    _log_handler = logging.FileHandler(logfile)
    _log_handler.setLevel(level)
    _log_handler.setFormatter(logging.Formatter(format))
    root.addHandler(_log_handler)
    root.setLevel(min(level, root.level) if root.level else level)

    if addstderr:
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setLevel(level)
        hdlr.setFormatter(logging.Formatter("%(name)s %(levelname)s: %(message)s"))
        root.addHandler(hdlr)

    root.info("Configured logging to %s", logfile)
