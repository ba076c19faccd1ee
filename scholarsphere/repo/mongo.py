"""
An implementation of the object store interface that uses a MongoDB database as its backend
"""
import re, logging
from copy import deepcopy
from collections.abc import Mapping, MutableMapping
from typing import Iterator, List

from pymongo import MongoClient, ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from . import base
from ..config import ConfigurationException, merge_config

_dburl_re = re.compile(r"^mongodb://(\w+(:\S+)?@)?\w+(\.\w+)*(:\d+)?/\w+(\?\w.*)?$")

DEF_TIMEOUT_MS = 5000

class MongoObjectStore(base.ObjectStore):
    """
    an implementation of ObjectStore using a MongoDB database as the backend store.  Content
    version bytes are kept in their own collection, one document per version.

    In addition to the :py:class:`common configuration parameters <scholarsphere.repo.base.ObjectStore>`,
    this implementation supports:

    ``timeout_ms``
        the number of milliseconds to wait for a server to be selected or a socket operation to
        complete before failing with a :py:class:`~scholarsphere.repo.base.StorageUnavailable`
        exception (default: 5000).
    """
    CONTENT_COLL = base.CONTENT_DSID
    ACTION_LOG_COLL = base.AUDIT_LOG

    def __init__(self, dburl: str, config: Mapping, locks: base.ObjectLocks = None,
                 log: logging.Logger = None):
        """
        create the store with its connector to the MongoDB database

        :param str   dburl:  the URL of MongoDB database in the form, 'mongodb://USER:PW@HOST:PORT/DBNAME'
        :param dict config:  the configuration for the store
        """
        if not _dburl_re.match(dburl):
            raise ValueError("MongoObjectStore: Bad dburl format (need "+
                             "'mongodb://[USER:PASS@]HOST[:PORT]/DBNAME'): "+dburl)
        self._dburl = dburl
        self._mngocli = None
        self._native = None
        self._indexed = set()
        super(MongoObjectStore, self).__init__(config, locks, log)

    def connect(self):
        """
        establish a connection to the database.  This will set the native property to the pymongo
        database object.
        """
        timeout = self.cfg.get('timeout_ms', DEF_TIMEOUT_MS)
        try:
            self._mngocli = MongoClient(self._dburl, serverSelectionTimeoutMS=timeout,
                                        socketTimeoutMS=timeout, connectTimeoutMS=timeout)
            self._native = self._mngocli.get_database()
            self._native[base.OBJECTS_COLL].create_index("id", unique=True)
            self._native[self.CONTENT_COLL].create_index([("objid", ASCENDING), ("key", ASCENDING)])
            self._native[self.ACTION_LOG_COLL].create_index("objid")
        except PyMongoError as ex:
            self.disconnect()
            raise base.StorageUnavailable("Unable to connect to object database: "+str(ex), cause=ex)

    def disconnect(self):
        """
        close the connection to the database.
        """
        if self._mngocli:
            try:
                self._mngocli.close()
            finally:
                self._mngocli = None
                self._native = None

    @property
    def native(self):
        """
        the native pymongo database object that contains the store's collections.  Accessing this
        property will implicitly connect this store to the underlying MongoDB database.
        """
        if self._native is None:
            self.connect()
        return self._native

    def _get_record(self, id):
        try:
            return self.native[base.OBJECTS_COLL].find_one({"id": id}, {'_id': False})
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("Failed to access object with id=%s: %s" % (id, str(ex)),
                                          id, ex)

    def _put_record(self, recdata, expect_rev):
        id = recdata['id']
        try:
            coll = self.native[base.OBJECTS_COLL]
            if expect_rev is None:
                coll.insert_one(deepcopy(recdata))
                return

            result = coll.replace_one({"id": id, "rev": expect_rev}, deepcopy(recdata))
            if result.matched_count == 0:
                if coll.count_documents({"id": id}) == 0:
                    raise base.ObjectNotFound(id)
                raise base.ConcurrentModification(id)

        except DuplicateKeyError as ex:
            raise base.AlreadyExists(id)
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("Failed to save object with id=%s: %s" % (id, str(ex)), id, ex)

    def _delete_record(self, id):
        try:
            result = self.native[base.OBJECTS_COLL].delete_one({"id": id})
            return result.deleted_count > 0
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("Failed while deleting object with id=%s: %s" % (id, str(ex)),
                                          id, ex)

    def _select_records(self, **constraints) -> Iterator[MutableMapping]:
        try:
            coll = self.native[base.OBJECTS_COLL]
            for rec in coll.find(constraints, {'_id': False}).sort("id", ASCENDING):
                yield rec
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("Failed while selecting objects: " + str(ex), cause=ex)

    def _store_content(self, id, key, data):
        try:
            self.native[self.CONTENT_COLL].replace_one({"objid": id, "key": key},
                                                       {"objid": id, "key": key, "data": bytes(data)},
                                                       upsert=True)
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s: Failed to save content version %s: %s" % (id, key, str(ex)),
                                          id, ex)

    def _fetch_content(self, id, key):
        try:
            doc = self.native[self.CONTENT_COLL].find_one({"objid": id, "key": key})
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s: Failed to read content version %s: %s" % (id, key, str(ex)),
                                          id, ex)
        if doc is None:
            return None
        return bytes(doc['data'])

    def _delete_content(self, id, key=None):
        sel = {"objid": id}
        if key is not None:
            sel['key'] = key
        try:
            self.native[self.CONTENT_COLL].delete_many(sel)
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s: Failed to delete content: %s" % (id, str(ex)), id, ex)

    def _save_action_data(self, actdata: Mapping):
        try:
            doc = deepcopy(actdata)
            doc['objid'] = base.subject_object_id(actdata['subject'])
            self.native[self.ACTION_LOG_COLL].insert_one(doc)
        except KeyError:
            raise ValueError("_save_action_data(): Action is missing subject id")
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable(actdata.get('subject', "id=?")+
                                          ": Failed to save action: "+str(ex), cause=ex) from ex

    def _select_actions_for(self, id: str) -> List[Mapping]:
        try:
            coll = self.native[self.ACTION_LOG_COLL]
            return [rec for rec in coll.find({'objid': id}, {'_id': False, 'objid': False})
                                       .sort("timestamp", ASCENDING)]
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable(id+": Failed to select action records: "+str(ex), id, ex) from ex

    def _delete_actions_for(self, id):
        try:
            self.native[self.ACTION_LOG_COLL].delete_many({'objid': id})
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable(id+": Failed to delete action records: "+str(ex), id, ex) from ex

    def _entry_coll(self, coll):
        out = self.native[coll]
        if coll not in self._indexed:
            out.create_index("key", unique=True)
            self._indexed.add(coll)
        return out

    def _get_entry(self, coll, key):
        try:
            doc = self._entry_coll(coll).find_one({"key": key}, {'_id': False})
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s/%s: Failed to read entry: %s" % (coll, key, str(ex)),
                                          cause=ex)
        return doc['data'] if doc else None

    def _put_entry(self, coll, key, data, create):
        doc = {"key": key, "data": deepcopy(data)}
        try:
            if create:
                self._entry_coll(coll).insert_one(doc)
            else:
                self._entry_coll(coll).replace_one({"key": key}, doc, upsert=True)
        except DuplicateKeyError:
            raise base.AlreadyExists(key)
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s/%s: Failed to save entry: %s" % (coll, key, str(ex)),
                                          cause=ex)

    def _select_entries(self, coll):
        try:
            for doc in self._entry_coll(coll).find({}, {'_id': False}).sort("key", ASCENDING):
                yield doc['data']
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s: Failed while selecting entries: %s" % (coll, str(ex)),
                                          cause=ex)

    def _delete_entry(self, coll, key):
        try:
            return self._entry_coll(coll).delete_one({"key": key}).deleted_count > 0
        except base.RepositoryException:
            raise
        except Exception as ex:
            raise base.StorageUnavailable("%s/%s: Failed to delete entry: %s" % (coll, key, str(ex)),
                                          cause=ex)


class MongoObjectStoreFactory(base.ObjectStoreFactory):
    """
    an ObjectStoreFactory that creates MongoObjectStore instances in which objects are stored in a
    MongoDB database.

    In addition to the :py:class:`common configuration parameters <scholarsphere.repo.base.ObjectStore>`,
    this implementation also supports:

    ``db_url``
        the URL for the MongoDB connection, of the form,
        ``mongodb://``*[USER*``:``*PASS*``@``*]HOST[*``:``*PORT]*``/``*DBNAME*
    """

    def __init__(self, config: Mapping, dburl: str = None):
        """
        Create the factory with the given configuration.

        :param dict config:  the configuration parameters used to configure stores
        :param str   dburl:  the URL for the MongoDB connection; it takes the same form as the
                             ``db_url`` configuration parameter.  If not provided, the value of the
                             ``db_url`` configuration parameter will be used.
        :raise ConfigurationException:  if the database's URL is provided neither as an
                             argument nor a configuration parameter.
        :raise ValueError:  if the specified database URL is of an incorrect form
        """
        super(MongoObjectStoreFactory, self).__init__(config)
        if not dburl:
            dburl = self._cfg.get("db_url")
            if not dburl:
                raise ConfigurationException("Missing required configuration parameter: db_url")
        if not _dburl_re.match(dburl):
            raise ValueError("MongoObjectStoreFactory: Bad dburl format (need "+
                             "'mongodb://[USER:PASS@]HOST[:PORT]/DBNAME'): "+dburl)
        self._dburl = dburl

    def create_store(self, config: Mapping = None, log: logging.Logger = None):
        cfg = merge_config(config or {}, deepcopy(self._cfg))
        return MongoObjectStore(self._dburl, cfg, self._locks, log)
