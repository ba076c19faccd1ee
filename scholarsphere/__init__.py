"""
scholarsphere:  the systems core of an institutional repository for "generic files".

A generic file is a versioned binary object (the uploaded content) together with descriptive
metadata, a depositor, access control lists, and an audit trail.  This package provides:

  * :py:mod:`~scholarsphere.repo` -- the repository core: durable object storage (with in-memory,
    file-based, and MongoDB backends), access control, the search index projection, the upload
    ingest pipeline, and the collection domain.
  * :py:mod:`~scholarsphere.web` -- a small WSGI framework used to expose the repository as a
    REST service.
  * :py:mod:`~scholarsphere.cli` -- the ``ssadm`` administrative command-line suite.
"""
try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

_SSSYSNAME = "ScholarSphere"
_SSSYSABBREV = "SS"

class SystemInfoMixin(object):
    """
    a mixin that provides an identification of the system and subsystem that a class belongs to.
    This is used to label log messages and exceptions with their origin.
    """
    def __init__(self, sysname, sysabbrev, subsysname, subsysabbrev, version):
        self._sysname = sysname
        self._sysabbrev = sysabbrev
        self._subsysname = subsysname
        self._subsysabbrev = subsysabbrev
        self._sysver = version

    @property
    def system_name(self):
        return self._sysname

    @property
    def system_abbrev(self):
        return self._sysabbrev

    @property
    def subsystem_name(self):
        return self._subsysname

    @property
    def subsystem_abbrev(self):
        return self._subsysabbrev

    @property
    def system_version(self):
        return self._sysver

    def getSysLogger(self):
        """
        return the Logger that should be used for messages from this (sub)system
        """
        import logging
        out = logging.getLogger(self.system_name)
        if self.subsystem_abbrev:
            out = out.getChild(self.subsystem_abbrev)
        return out

class ScholarSphereSystem(SystemInfoMixin):
    """
    A SystemInfoMixin representing the overall repository system.
    """
    def __init__(self, subsysname="", subsysabbrev=""):
        super(ScholarSphereSystem, self).__init__(_SSSYSNAME, _SSSYSABBREV,
                                                  subsysname, subsysabbrev, __version__)

system = ScholarSphereSystem()

class ScholarSphereException(Exception):
    """
    a general base class for exceptions raised by the repository system.

    Besides the message, an instance can carry the exception that caused it (``cause``) and a
    :py:class:`SystemInfoMixin` identifying the subsystem where it occurred (``system``).
    """
    def __init__(self, message=None, cause=None, sys=None):
        """
        create the exception
        :param str message:  the description of the problem
        :param Exception cause:  an exception that is the underlying cause of this one
        :param SystemInfoMixin sys:  the system that the exception is raised from
        """
        if not message:
            if cause:
                message = str(cause)
            else:
                message = "Unknown ScholarSphere system failure"
        super(ScholarSphereException, self).__init__(message)
        self.cause = cause
        self.system = sys

    @property
    def message(self):
        return self.args[0] if self.args else ""

class StateException(ScholarSphereException):
    """
    an exception indicating that a resource (e.g. a file) is in a state that does not allow the
    requested operation to complete
    """
    pass
