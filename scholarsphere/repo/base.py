"""
The abstract interface to the repository's object store.

This interface is based on the following model:

  *  Each *stored object* is a generic file (or a collection) with an externally minted, immutable
     identifier.
  *  An object has an ordered, append-only list of *content versions*; each version's bytes can be
     retrieved by its version identifier (``content.0``, ``content.1``, ...).
  *  An object carries descriptive *metadata* (field name to a list of strings), a list of
     *relationships* (predicate-target pairs), a *depositor* (set once at creation), and access
     control lists (``read`` and ``edit``).
  *  Every change to an object appends an :py:class:`~scholarsphere.utils.prov.Action` to the
     object's audit log.

An :py:class:`ObjectStore` does not make access control decisions; callers are expected to consult
the :py:mod:`~scholarsphere.repo.access` module first.  Concrete stores are created by an
:py:class:`ObjectStoreFactory` (see :py:mod:`.inmem`, :py:mod:`.fsbased`, and :py:mod:`.mongo`).
"""
import time, hashlib, threading, logging
from uuid import uuid4
from abc import ABC, abstractmethod
from copy import deepcopy
from collections import OrderedDict, namedtuple
from collections.abc import Mapping, MutableMapping
from contextlib import contextmanager
from typing import Iterator, List, Tuple, Union

from jsonpatch import JsonPatch

from .. import ScholarSphereSystem
from ..utils.prov import Action, Agent
from ..utils.logging import blab
from .exceptions import *
from .schema import SCHEMA_VERSION, GENERIC_FILE, COLLECTION, check_fields

sys = ScholarSphereSystem("Repository Object Store", "REPO")

OBJECTS_COLL = "objects"
AUDIT_LOG = "audit_log"
CONTENT_DSID = "content"
RESERVED_COLLS = (OBJECTS_COLL, AUDIT_LOG, CONTENT_DSID)

# all users, including anonymous ones, are implicitly part of this group
PUBLIC_GROUP = "group:public"
# all authenticated users are implicitly part of this group
REGISTERED_GROUP = "group:registered"

__all__ = ["ObjectStore", "ObjectStoreFactory", "StoredObject", "ContentVersion", "ACLs",
           "ObjectLocks", "GENERIC_FILE", "COLLECTION", "PUBLIC_GROUP", "REGISTERED_GROUP",
           "CONTENT_DSID", "system_agent", "RepositoryException", "ValidationError",
           "ObjectNotFound", "AccessDenied", "AlreadyExists", "IndexOutOfSync", "StorageUnavailable",
           "ConcurrentModification"]

def system_agent(vehicle="repo") -> Agent:
    """
    return the Agent used to record changes made by the system itself
    """
    return Agent(vehicle, Agent.AUTO, "scholarsphere", Agent.ADMIN)

ContentVersion = namedtuple("ContentVersion", "id size checksum label mime_type created key",
                            defaults=(None,))
ContentVersion.__doc__ = """
a description of one version of an object's content.  The bytes themselves are retrieved via
:py:meth:`ObjectStore.get_version`.  The ``key`` names the stored bytes within the backend; it is
unique to the write that produced them (records without one use the version identifier).
"""

def version_id(num: int) -> str:
    return "%s.%d" % (CONTENT_DSID, num)

def storage_key(vers: ContentVersion) -> str:
    return vers.key or vers.id

def checksum_of(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


class ACLs:
    """
    a class for accessing and manipulating the access control lists on a stored object.  The
    identities listed are either user identifiers or group identifiers (which start with
    ``group:``).
    """

    # Permissions
    READ = 'read'
    EDIT = 'edit'
    ALL = (READ, EDIT)

    def __init__(self, forobj, acldata: MutableMapping = None):
        """
        intialize the object from raw ACL data
        :param StoredObject forobj:  the object that the ACLs apply to
        :param MutableMapping acldata:  the raw ACL data as found in the object's record
        """
        if acldata is None:
            acldata = {}
        for perm in self.ALL:
            acldata.setdefault(perm, [])
        self._perms = acldata
        self._obj = forobj

    def iter_perm_granted(self, perm_name):
        """
        return an iterator to the identities that have been granted the given permission.
        """
        return iter(self._perms.get(perm_name, []))

    def grant_perm_to(self, perm_name, *ids):
        """
        add the user or group identities to the list having the given permission.
        """
        if perm_name not in self.ALL:
            raise ValueError("Not a recognized permission name: "+str(perm_name))
        for id in ids:
            if id not in self._perms[perm_name]:
                self._perms[perm_name].append(id)

    def revoke_perm_from(self, perm_name, *ids, protect_depositor: bool=True):
        """
        remove the given identities from the list having the given permission.  By default, the
        depositor's permissions cannot be revoked.
        """
        if perm_name not in self._perms:
            return
        for id in ids:
            if protect_depositor and self._obj and self._obj.depositor == id:
                continue
            if id in self._perms[perm_name]:
                self._perms[perm_name].remove(id)

    def _granted(self, perm_name, ids=()):
        """
        return True if any of the given identities have the specified permission.  This should
        be considered lowlevel; consider using :py:func:`~scholarsphere.repo.access.check_access`.
        """
        return len(set(self._perms.get(perm_name, [])).intersection(ids)) > 0

    def to_dict(self):
        return deepcopy(self._perms)

    def __str__(self):
        return "<ACLs: {}>".format(str(self._perms))


class StoredObject(object):
    """
    a local copy of an object that exists in the object store.

    Changes made to the object's relationships or ACLs are not persisted until it is passed to
    :py:meth:`ObjectStore.save`; changes to metadata and content go through
    :py:meth:`ObjectStore.update` and :py:meth:`ObjectStore.add_version`.
    """

    def __init__(self, recdata: Mapping):
        """
        initialize the object from its raw record data.  The data must include an ``id`` property.
        """
        if not recdata.get('id'):
            raise ValueError("Object record data is missing its 'id' property")
        self._data = self._initialize(recdata)
        self._acls = ACLs(self, self._data['acls'])

    def _initialize(self, recdata: MutableMapping) -> MutableMapping:
        now = time.time()
        recdata.setdefault('model', GENERIC_FILE)
        recdata.setdefault('schema', SCHEMA_VERSION)
        recdata.setdefault('depositor', None)
        recdata.setdefault('acls', {})
        recdata.setdefault('metadata', OrderedDict())
        recdata.setdefault('relationships', [])
        recdata.setdefault('content', [])
        recdata.setdefault('date_uploaded', now)
        recdata.setdefault('date_modified', recdata['date_uploaded'])
        recdata.setdefault('rev', 0)
        return recdata

    @property
    def id(self) -> str:
        return self._data['id']

    @property
    def model(self) -> str:
        return self._data['model']

    @property
    def schema_version(self) -> str:
        return self._data['schema']

    @property
    def depositor(self) -> str:
        """
        the identifier of the user that deposited this object, or None if not yet stamped
        """
        return self._data['depositor']

    def stamp_depositor(self, principal: str) -> bool:
        """
        record the given principal as the depositor of this object and grant it edit and read
        access.  This can only be done once: if the depositor is already set, nothing is changed.
        :return:  True if the depositor was set, False if it had been set previously
        """
        if not principal:
            raise ValueError("stamp_depositor(): principal not provided")
        if self._data['depositor']:
            return False
        self._data['depositor'] = principal
        self._acls.grant_perm_to(ACLs.EDIT, principal)
        self._acls.grant_perm_to(ACLs.READ, principal)
        return True

    @property
    def acls(self) -> ACLs:
        return self._acls

    @property
    def metadata(self) -> Mapping:
        """
        a copy of the object's descriptive metadata
        """
        return deepcopy(self._data['metadata'])

    def values(self, field: str) -> List[str]:
        """
        return the values of the given metadata field (an empty list if it is not set)
        """
        return list(self._data['metadata'].get(field, []))

    @property
    def relationships(self) -> List[Tuple[str, str]]:
        return [tuple(r) for r in self._data['relationships']]

    def related(self, predicate: str) -> List[str]:
        """
        return the targets of the relationships with the given predicate
        """
        return [t for p, t in self._data['relationships'] if p == predicate]

    def add_relationship(self, predicate: str, target: str):
        if [predicate, target] not in [list(r) for r in self._data['relationships']]:
            self._data['relationships'].append([predicate, target])

    @property
    def versions(self) -> List[ContentVersion]:
        """
        the descriptions of the object's content versions, oldest first
        """
        return [ContentVersion(**v) for v in self._data['content']]

    @property
    def latest_version(self) -> Union[ContentVersion, None]:
        if not self._data['content']:
            return None
        return ContentVersion(**self._data['content'][-1])

    def version(self, vid: str) -> Union[ContentVersion, None]:
        for v in self._data['content']:
            if v['id'] == vid:
                return ContentVersion(**v)
        return None

    @property
    def label(self) -> str:
        """
        the file name of the latest content version
        """
        latest = self.latest_version
        return latest.label if latest else None

    @property
    def date_uploaded(self) -> float:
        return self._data['date_uploaded']

    @property
    def date_modified(self) -> float:
        return self._data['date_modified']

    @property
    def rev(self) -> int:
        """
        the revision number of the stored record; it increments with every write
        """
        return self._data['rev']

    def to_dict(self):
        return deepcopy(self._data)

    def __str__(self):
        return "<%s %s>" % (self.model, self.id)


class ObjectLocks(object):
    """
    a registry of per-object locks used to serialize mutations on the same object within a process
    """
    def __init__(self):
        self._locks = {}
        self._lock = threading.Lock()

    def lock_for(self, id: str) -> threading.RLock:
        with self._lock:
            if id not in self._locks:
                self._locks[id] = threading.RLock()
            return self._locks[id]

    def forget(self, id: str):
        with self._lock:
            self._locks.pop(id, None)


class ObjectStore(ABC):
    """
    a client connected to the repository's object store.

    As this class is abstract, implementations provide support for specific storage backends by
    implementing the low-level ``_``-prefixed methods.  The public methods guarantee that a failed
    operation leaves no partially written object or version behind.

    This class recognizes the following configuration parameters:

    ``reject_unknown_fields``
        (bool) if True (default), a metadata update naming a field that is not in the schema is
        rejected with a :py:class:`ValidationError`; if False, such fields are ignored.
    """

    def __init__(self, config: Mapping, locks: ObjectLocks = None, log: logging.Logger = None):
        if config is None:
            config = {}
        self.cfg = config
        self._locks = locks or ObjectLocks()
        if not log:
            log = sys.getSysLogger().getChild("store")
        self.log = log

    def connect(self):
        """
        establish a connection to the backend storage.  This default implementation does nothing.
        """
        pass

    def disconnect(self):
        """
        release any connection to the backend storage.  This default implementation does nothing.
        """
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, e1, e2, e3):
        self.disconnect()
        return False

    @contextmanager
    def locked(self, id: str):
        """
        serialize access to the object with the given identifier within this process
        """
        lock = self._locks.lock_for(id)
        with lock:
            yield

    @property
    def reject_unknown_fields(self) -> bool:
        return self.cfg.get('reject_unknown_fields', True)

    ## public interface

    def exists(self, id: str) -> bool:
        """
        return True if an object with the given identifier exists in the store
        """
        return self._get_record(id) is not None

    def get(self, id: str) -> StoredObject:
        """
        return the object with the given identifier
        :raises ObjectNotFound:  if the object does not exist
        """
        rec = self._get_record(id)
        if rec is None:
            raise ObjectNotFound(id)
        return StoredObject(rec)

    def iter_objects(self, model: str = None, depositor: str = None) -> Iterator[StoredObject]:
        """
        iterate through the objects in the store, optionally restricted to a given model and/or
        depositor.
        """
        cnsts = {}
        if model:
            cnsts['model'] = model
        if depositor:
            cnsts['depositor'] = depositor
        for rec in self._select_records(**cnsts):
            yield StoredObject(rec)

    def create(self, id: str, metadata: Mapping = None, content: bytes = None, depositor: str = None,
               label: str = None, mime_type: str = None, model: str = GENERIC_FILE,
               relationships: List[Tuple[str,str]] = None, acls: Mapping = None,
               who: Agent = None) -> StoredObject:
        """
        create a new object.  The object, its depositor stamp, its relationships, and its first
        content version (if content is provided) are written as one unit: if any part fails to be
        written, nothing is left behind.  This method does not mint identifiers.

        :param str      id:  the (already minted) identifier for the new object
        :param dict metadata:  the initial descriptive metadata
        :param bytes content:  the initial content; if None, the object is created with no versions
        :param str depositor:  the identifier of the depositing user (required)
        :param str   label:  the file name to associate with the content
        :param str mime_type:  the MIME type of the content
        :param str   model:  the type of object, either GENERIC_FILE or COLLECTION
        :param list relationships:  a list of (predicate, target) pairs to attach
        :param dict   acls:  additional permissions to grant, as a map of permission names to lists
                             of identities
        :param Agent   who:  the agent creating the object (recorded in the audit log)
        :raises ValidationError:  if a required parameter is missing or the metadata is invalid
        :raises AlreadyExists:    if an object with the identifier already exists
        :raises StorageUnavailable:  if the backend storage fails
        """
        errors = []
        if not id:
            errors.append("id: missing required identifier")
        if not depositor:
            errors.append("depositor: missing required depositor")
        if model not in (GENERIC_FILE, COLLECTION):
            errors.append("model: unrecognized object model: "+str(model))
        if content is not None and not isinstance(content, (bytes, bytearray)):
            errors.append("content: not a byte string")
        if errors:
            raise ValidationError(objid=id, errors=errors)
        md, ignored = check_fields(model, metadata or {}, self.reject_unknown_fields, id)
        if ignored:
            self.log.warning("%s: ignoring unrecognized metadata fields: %s", id, ", ".join(ignored))
        from .access import apply_depositor_metadata
        if not who:
            who = system_agent()

        with self.locked(id):
            if self.exists(id):
                raise AlreadyExists(id)

            now = time.time()
            obj = StoredObject(OrderedDict([
                ("id", id), ("model", model), ("metadata", md),
                ("date_uploaded", now), ("date_modified", now)
            ]))
            apply_depositor_metadata(obj, depositor, self.log)
            for pred, target in (relationships or []):
                obj.add_relationship(pred, target)
            for perm, ids in (acls or {}).items():
                obj.acls.grant_perm_to(perm, *ids)

            vers = None
            if content is not None:
                vers = self._new_version(obj, 0, bytes(content), label, mime_type, now)
                self._store_content(id, vers.key, bytes(content))
            try:
                obj._data['rev'] = 1
                self._put_record(obj._data, None)
            except Exception:
                if vers:
                    self._discard_content(id, vers.key)
                raise

            act = Action(Action.CREATE, id, who, "created "+model,
                         OrderedDict([("depositor", depositor), ("metadata", md)]))
            if vers:
                act.add_subaction(Action(Action.PUT, id+"#"+vers.id, who, "uploaded "+str(label),
                                         vers._asdict(), None))
            try:
                self._record_action(act)
            except Exception:
                self._rollback_create(id)
                raise

        self.log.info("Created %s %s for depositor %s", model, id, depositor)
        return obj

    def _rollback_create(self, id):
        try:
            self._delete_record(id)
            self._discard_content(id)
            self._delete_actions_for(id)
        except Exception as ex:
            self.log.error("%s: failed to roll back partially created object: %s", id, str(ex))

    def add_version(self, id: str, content: bytes, label: str = None, mime_type: str = None,
                    who: Agent = None) -> str:
        """
        append a new content version to an existing object.  Previous versions are untouched.
        :return:  the identifier of the new version
        :raises ObjectNotFound:  if the object does not exist
        :raises ValidationError: if the content is not a non-empty byte string
        """
        if not isinstance(content, (bytes, bytearray)) or len(content) == 0:
            raise ValidationError("content: must be a non-empty byte string", id)
        if not who:
            who = system_agent()

        with self.locked(id):
            obj = self.get(id)
            now = max(time.time(), obj.date_modified)
            num = len(obj._data['content'])
            if label is None and obj.latest_version:
                label = obj.latest_version.label
            if mime_type is None and obj.latest_version:
                mime_type = obj.latest_version.mime_type
            vers = self._new_version(obj, num, bytes(content), label, mime_type, now)
            self._store_content(id, vers.key, bytes(content))
            try:
                self._write_update(obj, now)
            except Exception:
                self._discard_content(id, vers.key)
                raise

            self._record_action(Action(Action.PUT, id+"#"+vers.id, who, "uploaded "+str(label),
                                       vers._asdict()))

        self.log.info("%s: added content version %s", id, vers.id)
        return vers.id

    def get_version(self, id: str, vid: str = None) -> bytes:
        """
        return the bytes of a content version of an object
        :param str  id:  the identifier of the object
        :param str vid:  the identifier of the version; if None, the latest version is returned
        :raises ObjectNotFound:  if the object or version does not exist
        """
        obj = self.get(id)
        vers = obj.version(vid) if vid is not None else obj.latest_version
        if not vers:
            raise ObjectNotFound(id, vid or CONTENT_DSID)
        out = self._fetch_content(id, storage_key(vers))
        if out is None:
            if not self.exists(id):
                raise ObjectNotFound(id)
            raise ObjectNotFound(id, vers.id)
        return out

    def revert_to(self, id: str, vid: str, who: Agent = None) -> str:
        """
        make the content of a previous version current again by adding a copy of it as a new
        version.  History is never rewritten.
        :return:  the identifier of the new version
        :raises ObjectNotFound:  if the object or version does not exist
        """
        with self.locked(id):
            obj = self.get(id)
            old = obj.version(vid)
            if not old:
                raise ObjectNotFound(id, vid)
            data = self.get_version(id, vid)
            self.log.debug("%s: restoring content from %s", id, vid)
            return self.add_version(id, data, old.label, old.mime_type, who)

    def update(self, id: str, patch: Mapping, who: Agent = None, message: str = None) -> StoredObject:
        """
        replace the values of the named metadata fields.  Fields not named in the patch are
        untouched; a field given a value of None (or an empty list) is removed.  The object's
        modification date is always updated.
        :param str   id:  the identifier of the object to update
        :param dict patch:  the fields to replace, mapped to their new values
        :return:  the updated object
        :raises ObjectNotFound:  if the object does not exist
        :raises ValidationError: if the patch names fields not in the schema (and unknown fields
                                 are configured to be rejected)
        """
        if not isinstance(patch, Mapping):
            raise ValidationError("update: patch is not a mapping of fields", id)
        if not who:
            who = system_agent()

        with self.locked(id):
            obj = self.get(id)
            md, ignored = check_fields(obj.model, patch, self.reject_unknown_fields, id)
            if ignored:
                self.log.warning("%s: ignoring unrecognized metadata fields: %s", id, ", ".join(ignored))

            before = obj.metadata
            for field, vals in md.items():
                if vals:
                    obj._data['metadata'][field] = vals
                else:
                    obj._data['metadata'].pop(field, None)
            diff = JsonPatch.from_diff(before, obj._data['metadata'])

            now = max(time.time(), obj.date_modified)
            self._write_update(obj, now)
            self._record_action(Action(Action.PATCH, id, who, message or "updated metadata", diff))

        blab(self.log, "%s: updated fields: %s", id, ", ".join(md.keys()))
        return obj

    def save(self, obj: StoredObject, who: Agent = None, message: str = None) -> StoredObject:
        """
        persist changes made locally to an object's relationships and ACLs.  The object must not
        have been changed in the store since it was retrieved.
        :raises ObjectNotFound:  if the object no longer exists
        :raises ConcurrentModification:  if the object was changed since it was retrieved
        """
        if not who:
            who = system_agent()
        with self.locked(obj.id):
            current = self.get(obj.id)
            if current.depositor != obj.depositor:
                raise ValidationError("depositor cannot be changed", obj.id)
            if current.rev != obj.rev:
                raise ConcurrentModification(obj.id)
            obj._data['content'] = current._data['content']
            obj._data['metadata'] = current._data['metadata']
            now = max(time.time(), current.date_modified)
            self._write_update(obj, now)
            self._record_action(Action(Action.COMMENT, obj.id, who,
                                       message or "updated relationships and permissions"))
        return obj

    def delete(self, id: str, who: Agent = None):
        """
        remove the object along with all of its content versions and its audit log
        :raises ObjectNotFound:  if the object does not exist (including when it was already deleted)
        """
        if not who:
            who = system_agent()
        with self.locked(id):
            if not self._delete_record(id):
                raise ObjectNotFound(id)
            try:
                self._discard_content(id)
                self._delete_actions_for(id)
            except Exception as ex:
                # the object is no longer reachable; leftover bytes are only garbage
                self.log.error("%s: failed to clean up content after delete: %s", id, str(ex))
        self._locks.forget(id)
        self.log.info("%s: deleted by %s", id, who.actor)

    def audit(self, id: str) -> List[Mapping]:
        """
        return the audit log for the object as a list of action descriptions, oldest first
        :raises ObjectNotFound:  if the object does not exist
        """
        if not self.exists(id):
            raise ObjectNotFound(id)
        return self._select_actions_for(id)

    def verify_fixity(self, id: str) -> List[Mapping]:
        """
        recompute the checksum of every content version of the object and compare it with the
        recorded one.  Nothing is modified.
        :return:  a list, one item per version, each with ``version``, ``expected``, ``actual``, and
                  ``verified`` properties
        :raises ObjectNotFound:  if the object does not exist
        """
        obj = self.get(id)
        out = []
        for vers in obj.versions:
            data = self._fetch_content(id, storage_key(vers))
            actual = checksum_of(data) if data is not None else None
            out.append(OrderedDict([
                ("version", vers.id),
                ("expected", vers.checksum),
                ("actual", actual),
                ("verified", actual == vers.checksum)
            ]))
            if actual != vers.checksum:
                self.log.error("%s: fixity check failed for %s", id, vers.id)
        return out

    ## named entries

    def _check_coll(self, coll: str):
        if not coll or coll in RESERVED_COLLS:
            raise ValueError("Not a usable entry collection name: "+str(coll))

    def get_entry(self, coll: str, key: str) -> Union[MutableMapping, None]:
        """
        return the data saved under a key in a named collection of entries, or None if there is
        none.  Entries hold data that belongs to the repository as a whole (such as collection
        types) rather than to a single object.
        """
        self._check_coll(coll)
        return self._get_entry(coll, key)

    def put_entry(self, coll: str, key: str, data: Mapping, create: bool = False):
        """
        save data under a key in a named collection of entries, replacing any data already there
        :param bool create:  if True, the entry must not already exist
        :raises AlreadyExists:  if create is True and the entry exists
        """
        self._check_coll(coll)
        with self.locked("%s#%s" % (coll, key)):
            self._put_entry(coll, key, data, create)

    def iter_entries(self, coll: str) -> Iterator[MutableMapping]:
        self._check_coll(coll)
        return self._select_entries(coll)

    def delete_entry(self, coll: str, key: str) -> bool:
        """
        remove an entry, returning False if it did not exist
        """
        self._check_coll(coll)
        with self.locked("%s#%s" % (coll, key)):
            return self._delete_entry(coll, key)

    ## helpers

    def _new_version(self, obj, num, data, label, mime_type, now) -> ContentVersion:
        vid = version_id(num)
        vers = ContentVersion(vid, len(data), checksum_of(data), label,
                              mime_type or "application/octet-stream", now,
                              "%s-%s" % (vid, uuid4().hex))
        obj._data['content'].append(vers._asdict())
        return vers

    def _write_update(self, obj: StoredObject, now: float):
        prevrev = obj.rev
        obj._data['date_modified'] = now
        obj._data['rev'] = prevrev + 1
        try:
            self._put_record(obj._data, prevrev)
        except Exception:
            obj._data['rev'] = prevrev
            raise

    def _record_action(self, act: Action):
        self._save_action_data(act.to_dict())

    def _discard_content(self, id: str, key: str = None):
        self._delete_content(id, key)

    ## the backend-specific interface

    @abstractmethod
    def _get_record(self, id: str) -> Union[MutableMapping, None]:
        """
        return the raw record for the object with the given identifier or None if it does not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def _put_record(self, recdata: Mapping, expect_rev: Union[int, None]):
        """
        write a raw object record.  If ``expect_rev`` is None, the record must not already exist;
        otherwise, the currently stored record must have a ``rev`` equal to ``expect_rev``.
        :raises AlreadyExists:  if expect_rev is None and the record exists
        :raises ConcurrentModification:  if the stored record's revision does not match
        :raises StorageUnavailable:  if the write fails
        """
        raise NotImplementedError()

    @abstractmethod
    def _delete_record(self, id: str) -> bool:
        """
        delete the raw record, returning False if it did not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def _select_records(self, **constraints) -> Iterator[MutableMapping]:
        """
        iterate through the raw records whose top-level properties match the given constraints
        """
        raise NotImplementedError()

    @abstractmethod
    def _store_content(self, id: str, key: str, data: bytes):
        """
        save the bytes of a content version under the given storage key
        """
        raise NotImplementedError()

    @abstractmethod
    def _fetch_content(self, id: str, key: str) -> Union[bytes, None]:
        """
        return the bytes saved under a storage key or None if they do not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def _delete_content(self, id: str, key: str = None):
        """
        delete the bytes saved under a storage key, or all of the object's content if key is None
        """
        raise NotImplementedError()

    @abstractmethod
    def _save_action_data(self, actdata: Mapping):
        """
        append the given action data to the audit log of its subject.  The object identifier is
        the part of the action's ``subject`` preceding any ``#``.
        """
        raise NotImplementedError()

    @abstractmethod
    def _select_actions_for(self, id: str) -> List[Mapping]:
        """
        return the action data recorded for the object with the given identifier, oldest first
        """
        raise NotImplementedError()

    @abstractmethod
    def _delete_actions_for(self, id: str):
        """
        delete the audit log for the object with the given identifier
        """
        raise NotImplementedError()

    @abstractmethod
    def _get_entry(self, coll: str, key: str) -> Union[MutableMapping, None]:
        raise NotImplementedError()

    @abstractmethod
    def _put_entry(self, coll: str, key: str, data: Mapping, create: bool):
        """
        save the data of an entry.  If create is True and the entry exists, AlreadyExists must be
        raised without changing it.
        """
        raise NotImplementedError()

    @abstractmethod
    def _select_entries(self, coll: str) -> Iterator[MutableMapping]:
        """
        iterate through the data of all entries in the collection
        """
        raise NotImplementedError()

    @abstractmethod
    def _delete_entry(self, coll: str, key: str) -> bool:
        raise NotImplementedError()

def subject_object_id(subject: str) -> str:
    """
    return the object identifier embedded in an action's subject
    """
    return subject.split('#', 1)[0]


class ObjectStoreFactory(ABC):
    """
    an abstract class for creating clients connected to the object store
    """

    def __init__(self, config: Mapping):
        """
        initialize the factory with its configuration.  The configuration provided here serves as
        the default parameters for the stores it creates.
        """
        if config is None:
            config = {}
        self._cfg = config
        self._locks = ObjectLocks()

    @property
    def cfg(self) -> Mapping:
        return self._cfg

    @abstractmethod
    def create_store(self, config: Mapping = None, log: logging.Logger = None) -> ObjectStore:
        """
        create a store client.
        :param Mapping config:  configuration parameters that should override those given to the
                                factory at construction time
        :param Logger     log:  the logger the store should use
        """
        raise NotImplementedError()
