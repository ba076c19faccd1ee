"""
File access helpers for the file-based object store: JSON records read and written under file
locks, and content bytes written so that readers never see a partial file.
"""
import os, json, fcntl, tempfile, threading
from collections import OrderedDict

from .. import StateException
from .logging import blab, utilslog as log

__all__ = [ 'LockedFile', 'read_json', 'write_bytes_atomically' ]

class _PathLock(object):
    # many readers or one writer among the threads of this process
    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writing = False

    def acquire(self, exclusive: bool):
        with self._cond:
            if exclusive:
                self._cond.wait_for(lambda: not self._writing and self._readers == 0)
                self._writing = True
            else:
                self._cond.wait_for(lambda: not self._writing)
                self._readers += 1

    def release(self, exclusive: bool):
        with self._cond:
            if exclusive:
                self._writing = False
            elif self._readers > 0:
                self._readers -= 1
            self._cond.notify_all()

_path_locks = {}
_path_locks_guard = threading.Lock()

def _lock_for(path: str) -> _PathLock:
    path = os.path.abspath(path)
    with _path_locks_guard:
        return _path_locks.setdefault(path, _PathLock())

class LockedFile(object):
    """
    a file opened under a lock that holds across threads (via an in-process readers/writer lock)
    and across processes (via ``fcntl.lockf``).  A file opened for reading gets a shared lock;
    any writing mode (``w``, ``a``, or ``+``) gets an exclusive one.

    .. code-block:: python

       with LockedFile(recfile, 'a+') as fd:
           fd.seek(0)
           rec = json.load(fd)
    """

    def __init__(self, filename: str, mode: str = 'r'):
        self._fname = filename
        self.mode = mode
        self._fo = None
        self._exclusive = False
        self._lock = _lock_for(filename)

    @property
    def fo(self):
        """
        the open file object (or None if the file is not open)
        """
        return self._fo

    def open(self, mode: str = None):
        """
        open and lock the file, returning the open file object
        :raises StateException:  if this file is already open
        """
        if self._fo:
            raise StateException(str(self._fname)+": file is already open")
        if mode:
            self.mode = mode

        self._exclusive = any(c in self.mode for c in "wa+")
        self._lock.acquire(self._exclusive)
        try:
            self._fo = open(self._fname, self.mode)
            fcntl.lockf(self._fo, fcntl.LOCK_EX if self._exclusive else fcntl.LOCK_SH)
        except Exception:
            if self._fo:
                self._fo.close()
                self._fo = None
            self._lock.release(self._exclusive)
            raise
        return self._fo

    def close(self):
        if not self._fo:
            return
        try:
            self._fo.close()
        finally:
            self._fo = None
            self._lock.release(self._exclusive)

    def __enter__(self):
        return self.open()

    def __exit__(self, e1, e2, e3):
        self.close()
        return False

def read_json(jsonfile: str):
    """
    read a JSON file (keeping the order of object properties) while holding a shared lock on it
    :raises IOError:    if the file cannot be opened or locked
    :raises ValueError: if the file does not contain valid JSON
    """
    with LockedFile(jsonfile) as fd:
        blab(log, "reading %s", jsonfile)
        return json.load(fd, object_pairs_hook=OrderedDict)

def write_bytes_atomically(data: bytes, destfile: str):
    """
    write bytes to a temporary file beside ``destfile`` and then rename it into place
    :raises StateException:  if the data could not be written
    """
    tmpf = None
    try:
        fd, tmpf = tempfile.mkstemp(dir=os.path.dirname(os.path.abspath(destfile)), prefix="._")
        with os.fdopen(fd, 'wb') as fo:
            fo.write(data)
            fo.flush()
            os.fsync(fo.fileno())
        os.replace(tmpf, destfile)
    except Exception as ex:
        if tmpf and os.path.exists(tmpf):
            os.remove(tmpf)
        raise StateException("%s: Failed to write content: %s" % (destfile, str(ex)), cause=ex)
