"""
An implementation of the object store interface based on a simple in-memory look-up.

This is provided primarily for testing purposes and single-process development servers.
"""
import logging
from copy import deepcopy
from collections.abc import Mapping, MutableMapping
from typing import Iterator, List

from . import base
from ..config import merge_config

class InMemoryObjectStore(base.ObjectStore):
    """
    an in-memory ObjectStore implementation
    """

    def __init__(self, dbdata: MutableMapping, config: Mapping, locks: base.ObjectLocks = None,
                 log: logging.Logger = None):
        self._db = dbdata
        for coll in (base.OBJECTS_COLL, base.CONTENT_DSID, base.AUDIT_LOG):
            self._db.setdefault(coll, {})
        super(InMemoryObjectStore, self).__init__(config, locks, log)

    def _get_record(self, id):
        return deepcopy(self._db[base.OBJECTS_COLL].get(id))

    def _put_record(self, recdata, expect_rev):
        coll = self._db[base.OBJECTS_COLL]
        current = coll.get(recdata['id'])
        if expect_rev is None:
            if current is not None:
                raise base.AlreadyExists(recdata['id'])
        elif current is None:
            raise base.ObjectNotFound(recdata['id'])
        elif current.get('rev') != expect_rev:
            raise base.ConcurrentModification(recdata['id'])
        coll[recdata['id']] = deepcopy(recdata)

    def _delete_record(self, id):
        if id in self._db[base.OBJECTS_COLL]:
            del self._db[base.OBJECTS_COLL][id]
            return True
        return False

    def _select_records(self, **constraints) -> Iterator[MutableMapping]:
        for rec in list(self._db[base.OBJECTS_COLL].values()):
            if all(rec.get(k) == v for k, v in constraints.items()):
                yield deepcopy(rec)

    def _store_content(self, id, key, data):
        self._db[base.CONTENT_DSID].setdefault(id, {})[key] = bytes(data)

    def _fetch_content(self, id, key):
        return self._db[base.CONTENT_DSID].get(id, {}).get(key)

    def _delete_content(self, id, key=None):
        if id not in self._db[base.CONTENT_DSID]:
            return
        if key is None:
            del self._db[base.CONTENT_DSID][id]
        else:
            self._db[base.CONTENT_DSID][id].pop(key, None)

    def _save_action_data(self, actdata: Mapping):
        if 'subject' not in actdata:
            raise ValueError("_save_action_data(): Missing subject property in action data")
        id = base.subject_object_id(actdata['subject'])
        self._db[base.AUDIT_LOG].setdefault(id, []).append(deepcopy(actdata))

    def _select_actions_for(self, id: str) -> List[Mapping]:
        return deepcopy(self._db[base.AUDIT_LOG].get(id, []))

    def _delete_actions_for(self, id):
        self._db[base.AUDIT_LOG].pop(id, None)

    def _get_entry(self, coll, key):
        return deepcopy(self._db.get(coll, {}).get(key))

    def _put_entry(self, coll, key, data, create):
        entries = self._db.setdefault(coll, {})
        if create and key in entries:
            raise base.AlreadyExists(key)
        entries[key] = deepcopy(data)

    def _select_entries(self, coll):
        entries = self._db.get(coll, {})
        for key in sorted(list(entries.keys())):
            data = entries.get(key)
            if data is not None:
                yield deepcopy(data)

    def _delete_entry(self, coll, key):
        return self._db.get(coll, {}).pop(key, None) is not None


class InMemoryObjectStoreFactory(base.ObjectStoreFactory):
    """
    an ObjectStoreFactory that creates InMemoryObjectStore instances in which objects are kept in
    data structures in memory.  Objects remain in memory for the life of the factory and all the
    stores it creates.
    """

    def __init__(self, config: Mapping, _dbdata=None):
        """
        Create the factory with the given configuration.

        :param dict  config:  the configuration parameters used to configure stores
        :param dict _dbdata:  the initial data for the store.  (Note: internal knowledge of
                              of the in-memory data structure required to use this input.)  If
                              not provided, an empty store is created.
        """
        super(InMemoryObjectStoreFactory, self).__init__(config)
        self._db = {
            base.OBJECTS_COLL: {},
            base.CONTENT_DSID: {},
            base.AUDIT_LOG: {}
        }
        if _dbdata:
            self._db.update(deepcopy(_dbdata))

    def create_store(self, config: Mapping = None, log: logging.Logger = None):
        cfg = merge_config(config or {}, deepcopy(self._cfg))
        return InMemoryObjectStore(self._db, cfg, self._locks, log)
