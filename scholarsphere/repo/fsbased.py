"""
An implementation of the object store interface that persists objects to files on disk.

Each object's record is saved as a JSON file, ``objects/<id>.json``, below the store's root
directory; the bytes of its content versions are saved below ``content/<id>/``; and its audit log is
saved as a list file, ``audit_log/<id>.lis``, containing one JSON object per line.  Named entries
that belong to no single object are saved as ``<collection>/<key>.json``.
"""
import os, json, shutil, logging
from pathlib import Path
from urllib.parse import quote
from copy import deepcopy
from collections import OrderedDict
from collections.abc import Mapping, MutableMapping
from typing import Iterator, List

from . import base
from ..utils import LockedFile, read_json, write_bytes_atomically
from ..config import ConfigurationException, merge_config

class FSBasedObjectStore(base.ObjectStore):
    """
    an implementation of ObjectStore in which the data is persisted to flat files on disk.  Writes
    to an object's record are guarded by an exclusive file lock, so several processes may share the
    same root directory.
    """

    def __init__(self, rootdir: str, config: Mapping, locks: base.ObjectLocks = None,
                 log: logging.Logger = None):
        self._root = Path(rootdir)
        if not self._root.is_dir():
            raise base.StorageUnavailable("FSBasedObjectStore: %s: does not exist as a directory" % rootdir)
        super(FSBasedObjectStore, self).__init__(config, locks, log)

    def _ensure_collection(self, collname) -> Path:
        collpath = self._root / collname
        if not collpath.exists():
            os.makedirs(collpath, exist_ok=True)
        return collpath

    @staticmethod
    def _fname(id):
        return quote(id, safe='')

    def _recpath(self, id) -> Path:
        return self._root / base.OBJECTS_COLL / (self._fname(id)+".json")

    def _contentdir(self, id) -> Path:
        return self._root / base.CONTENT_DSID / self._fname(id)

    def _actpath(self, id) -> Path:
        return self._root / base.AUDIT_LOG / (self._fname(id)+".lis")

    def _get_record(self, id):
        recpath = self._recpath(id)
        if not recpath.is_file() or recpath.stat().st_size == 0:
            return None
        try:
            rec = read_json(str(recpath))
        except ValueError as ex:
            raise base.StorageUnavailable(id+": Unable to read object record as JSON: "+str(ex), id, ex)
        except IOError as ex:
            raise base.StorageUnavailable(str(recpath)+": file locking error: "+str(ex), id, ex)
        return rec or None

    def _put_record(self, recdata, expect_rev):
        id = recdata['id']
        self._ensure_collection(base.OBJECTS_COLL)
        recpath = self._recpath(id)
        if expect_rev is not None and not recpath.is_file():
            raise base.ObjectNotFound(id)

        try:
            with LockedFile(str(recpath), 'a+') as fd:
                fd.seek(0)
                text = fd.read()
                current = json.loads(text) if text.strip() else None

                if expect_rev is None:
                    if current is not None:
                        raise base.AlreadyExists(id)
                elif current is None:
                    raise base.ObjectNotFound(id)
                elif current.get('rev') != expect_rev:
                    raise base.ConcurrentModification(id)

                fd.seek(0)
                fd.truncate()
                json.dump(recdata, fd, indent=4, separators=(',', ': '))
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable(id+": Unable to write object record: "+str(ex), id, ex)

    def _delete_record(self, id):
        recpath = self._recpath(id)
        if not recpath.is_file():
            return False
        try:
            with LockedFile(str(recpath), 'a+'):
                recpath.unlink()
        except FileNotFoundError:
            return False
        except OSError as ex:
            raise base.StorageUnavailable(id+": Unable to delete object record: "+str(ex), id, ex)
        return True

    def _select_records(self, **constraints) -> Iterator[MutableMapping]:
        collpath = self._root / base.OBJECTS_COLL
        if not collpath.is_dir():
            return
        for fn in sorted(os.listdir(collpath)):
            if not fn.endswith(".json"):
                continue
            recf = collpath / fn
            try:
                rec = read_json(str(recf))
            except (ValueError, FileNotFoundError):
                # skip over corrupted or vanished records
                continue
            except IOError as ex:
                raise base.StorageUnavailable(str(recf)+": file locking error: "+str(ex), cause=ex)
            if rec and all(rec.get(k) == v for k, v in constraints.items()):
                yield rec

    def _store_content(self, id, key, data):
        cdir = self._contentdir(id)
        try:
            os.makedirs(cdir, exist_ok=True)
            write_bytes_atomically(data, str(cdir / key))
        except Exception as ex:
            raise base.StorageUnavailable(id+": Unable to write content version "+key+": "+str(ex),
                                          id, ex)

    def _fetch_content(self, id, key):
        cpath = self._contentdir(id) / key
        if not cpath.is_file():
            return None
        try:
            with open(cpath, 'rb') as fd:
                return fd.read()
        except OSError as ex:
            raise base.StorageUnavailable(id+": Unable to read content version "+key+": "+str(ex),
                                          id, ex)

    def _delete_content(self, id, key=None):
        cdir = self._contentdir(id)
        try:
            if key is None:
                if cdir.is_dir():
                    shutil.rmtree(cdir)
            elif (cdir / key).is_file():
                (cdir / key).unlink()
        except OSError as ex:
            raise base.StorageUnavailable(id+": Unable to delete content: "+str(ex), id, ex)

    def _save_action_data(self, actdata: Mapping):
        self._ensure_collection(base.AUDIT_LOG)
        try:
            id = base.subject_object_id(actdata['subject'])
        except KeyError:
            raise ValueError("_save_action_data(): Action is missing subject id")
        try:
            self._append_json_to_listfile(actdata, self._actpath(id))
        except Exception as ex:
            raise base.StorageUnavailable(id+": Unable to append action: "+str(ex), id, ex) from ex

    # the action log list file contains one JSON object per line
    def _append_json_to_listfile(self, data: Mapping, outpath: Path):
        with LockedFile(str(outpath), 'a') as fd:
            fd.write(json.dumps(data))
            fd.write("\n")

    def _load_from_listfile(self, inpath: Path):
        with LockedFile(str(inpath)) as fd:
            return [json.loads(line.strip(), object_pairs_hook=OrderedDict) for line in fd if line.strip()]

    def _select_actions_for(self, id: str) -> List[Mapping]:
        recpath = self._actpath(id)
        if not recpath.is_file():
            return []
        try:
            return self._load_from_listfile(recpath)
        except Exception as ex:
            raise base.StorageUnavailable(id+": Unable to read actions: "+str(ex), id, ex)

    def _delete_actions_for(self, id):
        recpath = self._actpath(id)
        if recpath.is_file():
            recpath.unlink()

    def _entrypath(self, coll, key) -> Path:
        return self._root / coll / (self._fname(key)+".json")

    def _get_entry(self, coll, key):
        path = self._entrypath(coll, key)
        if not path.is_file() or path.stat().st_size == 0:
            return None
        try:
            return read_json(str(path))
        except ValueError as ex:
            raise base.StorageUnavailable("%s/%s: Unable to read entry as JSON: %s" % (coll, key, str(ex)),
                                          cause=ex)
        except IOError as ex:
            raise base.StorageUnavailable(str(path)+": file locking error: "+str(ex), cause=ex)

    def _put_entry(self, coll, key, data, create):
        self._ensure_collection(coll)
        try:
            with LockedFile(str(self._entrypath(coll, key)), 'a+') as fd:
                fd.seek(0)
                if create and fd.read().strip():
                    raise base.AlreadyExists(key)
                fd.seek(0)
                fd.truncate()
                json.dump(data, fd, indent=4, separators=(',', ': '))
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s/%s: Unable to write entry: %s" % (coll, key, str(ex)),
                                          cause=ex)

    def _select_entries(self, coll):
        collpath = self._root / coll
        if not collpath.is_dir():
            return
        for fn in sorted(os.listdir(collpath)):
            if not fn.endswith(".json"):
                continue
            try:
                data = read_json(str(collpath / fn))
            except (ValueError, FileNotFoundError):
                continue
            except IOError as ex:
                raise base.StorageUnavailable(str(collpath / fn)+": file locking error: "+str(ex),
                                              cause=ex)
            if data:
                yield data

    def _delete_entry(self, coll, key):
        path = self._entrypath(coll, key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as ex:
            raise base.StorageUnavailable("%s/%s: Unable to delete entry: %s" % (coll, key, str(ex)),
                                          cause=ex)
        return True


class FSBasedObjectStoreFactory(base.ObjectStoreFactory):
    """
    an ObjectStoreFactory that creates FSBasedObjectStore instances in which objects are stored in
    files on disk under a specified directory.

    In addition to the :py:class:`common configuration parameters <scholarsphere.repo.base.ObjectStore>`,
    this implementation also supports:

    ``root_dir``
         the root directory where the store's files will be saved below.  If not specified, this
         value must be provided to the constructor directly.
    """

    def __init__(self, config: Mapping, rootdir: str = None):
        """
        Create the factory with the given configuration.

        :param dict  config:  the configuration parameters used to configure stores
        :param str  rootdir:  the root directory to store files below; if not provided, the value
                              of the ``root_dir`` configuration parameter will be used.
        :raise ConfigurationException:  if the root directory is provided neither as an argument nor
                              a configuration parameter.
        :raise StorageUnavailable:  if the specified root directory does not exist
        """
        super(FSBasedObjectStoreFactory, self).__init__(config)
        if not rootdir:
            rootdir = self.cfg.get("root_dir")
            if not rootdir:
                raise ConfigurationException("Missing required configuration parameter: root_dir")
        if not os.path.isdir(rootdir):
            raise base.StorageUnavailable("FSBasedObjectStoreFactory: %s: does not exist as a directory"
                                          % rootdir)
        self._rootdir = rootdir

    def create_store(self, config: Mapping = None, log: logging.Logger = None):
        cfg = merge_config(config or {}, deepcopy(self._cfg))
        return FSBasedObjectStore(self._rootdir, cfg, self._locks, log)
