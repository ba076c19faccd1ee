"""
The collection domain: collection types, permission templates, and the service for building and
creating collections.

A collection is stored as a :py:class:`~scholarsphere.repo.base.StoredObject` with the
``Collection`` model.  Its type is referenced through a ``hasCollectionType`` relationship whose
target is the type's global identifier (gid).  A collection may have (at most) one
:py:class:`PermissionTemplate`, which grants *manage*, *deposit*, or *view* access to users and
groups; the user that makes the collection always receives *manage* access through it.

The type of a collection is determined as follows:  explicitly requested capability settings
(e.g. ``not_discoverable``) take precedence over an explicitly requested type gid, which takes
precedence over the default "User Collection" type.
"""
from logging import Logger
from collections import OrderedDict
from collections.abc import Mapping
from typing import Callable, Iterable, List, Union

from .base import (ObjectStore, StoredObject, COLLECTION, ValidationError, ObjectNotFound,
                   AccessDenied, AlreadyExists)
from .access import apply_depositor_metadata
from .index import IndexProjector, SearchDocument, project
from .schema import check_fields
from .minter import NoidMinter
from .. import ScholarSphereSystem
from ..utils.prov import Agent

USER_COLLECTION_TITLE = "User Collection"
USER_COLLECTION_MACHINE_ID = "user_collection"
TYPE_GID_PREFIX = "gid://scholarsphere/CollectionType/"
HAS_COLLECTION_TYPE = "hasCollectionType"

# the store entry collections holding the registries
TYPES_COLL = "collection_types"
TEMPLATES_COLL = "permission_templates"

MANAGE = "manage"
DEPOSIT = "deposit"
VIEW = "view"
ACCESS_TYPES = (MANAGE, DEPOSIT, VIEW)

USER_AGENT = "user"
GROUP_AGENT = "group"

class CollectionType(object):
    """
    a description of a kind of collection and the capabilities its collections have
    """
    FLAGS = ("discoverable", "sharable", "brandable", "nestable")

    def __init__(self, title: str, machine_id: str, gid: str = None, description: str = None,
                 **flags):
        self.title = title
        self.machine_id = machine_id
        self.gid = gid
        self.description = description
        for flag in self.FLAGS:
            setattr(self, flag, bool(flags.get(flag, True)))

    @property
    def is_user_collection(self) -> bool:
        return self.machine_id == USER_COLLECTION_MACHINE_ID

    @property
    def number(self) -> int:
        """
        the sequence number at the end of the gid (0 if there is none)
        """
        try:
            return int(self.gid.rsplit('/', 1)[-1])
        except (AttributeError, ValueError):
            return 0

    @classmethod
    def settings_to_flags(cls, settings: Iterable[str]) -> Mapping:
        """
        convert a list of setting names (e.g. ``discoverable``, ``not_sharable``) to a mapping of
        capability flags
        :raises ValueError:  if a name is not a recognized setting
        """
        out = OrderedDict()
        for s in settings:
            val = True
            name = s
            if s.startswith("not_"):
                val = False
                name = s[len("not_"):]
            if name not in cls.FLAGS:
                raise ValueError("Unrecognized collection type setting: "+s)
            out[name] = val
        return out

    def to_dict(self):
        out = OrderedDict([
            ("gid", self.gid),
            ("title", self.title),
            ("machine_id", self.machine_id),
            ("description", self.description)
        ])
        for flag in self.FLAGS:
            out[flag] = getattr(self, flag)
        return out

    @classmethod
    def from_dict(cls, data: Mapping) -> "CollectionType":
        return cls(data['title'], data['machine_id'], data.get('gid'), data.get('description'),
                   **{f: data.get(f, True) for f in cls.FLAGS})

    def __eq__(self, other):
        return isinstance(other, CollectionType) and self.to_dict() == other.to_dict()

    def __str__(self):
        return "<CollectionType %s: %s>" % (self.machine_id, self.title)


class CollectionTypeRegistry(object):
    """
    the set of known collection types, each addressable by its gid.  The types are saved as entries
    in the object store, so every service using the same store sees the same types.  The default
    "User Collection" type is created on first use.

    A new type gets the next unused gid number.  If several processes race to create the default
    type, they all settle on the one with the lowest number.
    """

    def __init__(self, store: ObjectStore, default_type: Mapping = None):
        self.store = store
        self._defcfg = default_type or {}

    def __len__(self):
        return self.count

    @property
    def count(self) -> int:
        return len(self._all())

    def _all(self) -> List[CollectionType]:
        return sorted((CollectionType.from_dict(d) for d in self.store.iter_entries(TYPES_COLL)),
                      key=lambda t: t.number)

    def get(self, gid: str) -> Union[CollectionType, None]:
        if not gid:
            return None
        data = self.store.get_entry(TYPES_COLL, gid)
        return CollectionType.from_dict(data) if data else None

    def _register(self, make: Callable[[int], CollectionType]) -> CollectionType:
        num = 0
        while True:
            num = max([num] + [t.number for t in self._all()]) + 1
            out = make(num)
            try:
                self.store.put_entry(TYPES_COLL, out.gid, out.to_dict(), create=True)
                return out
            except AlreadyExists:
                continue

    def create(self, title: str, machine_id: str = None, description: str = None, **flags) -> CollectionType:
        """
        register a new collection type
        """
        if not machine_id:
            machine_id = title.lower().replace(' ', '_')
        return self._register(lambda n: CollectionType(title, machine_id, TYPE_GID_PREFIX+str(n),
                                                       description, **flags))

    def find_or_create_default(self) -> CollectionType:
        """
        return the default "User Collection" type
        """
        for ctype in self._all():
            if ctype.is_user_collection:
                return ctype
        made = self.create(self._defcfg.get('title', USER_COLLECTION_TITLE),
                           USER_COLLECTION_MACHINE_ID, self._defcfg.get('description'),
                           **{f: self._defcfg.get(f, True) for f in CollectionType.FLAGS})
        for ctype in self._all():
            if ctype.is_user_collection:
                return ctype
        return made

    def create_from_settings(self, settings: Iterable[str]) -> CollectionType:
        """
        register a new collection type with the capabilities identified by the given settings;
        capabilities not named are enabled.
        """
        flags = CollectionType.settings_to_flags(settings)
        def make(n):
            title = "Collection Type %d" % n
            return CollectionType(title, title.lower().replace(' ', '_'), TYPE_GID_PREFIX+str(n),
                                  **flags)
        return self._register(make)


class PermissionTemplateAccess(object):
    """
    a grant of one type of access (manage, deposit, or view) to a user or group
    """

    def __init__(self, agent_type: str, agent_id: str, access: str):
        if agent_type not in (USER_AGENT, GROUP_AGENT):
            raise ValueError("PermissionTemplateAccess: unrecognized agent type: "+str(agent_type))
        if access not in ACCESS_TYPES:
            raise ValueError("PermissionTemplateAccess: unrecognized access: "+str(access))
        self.agent_type = agent_type
        self.agent_id = agent_id
        self.access = access

    @property
    def principal(self) -> str:
        """
        the identity this access is granted to, in the form used in access control lists
        """
        if self.agent_type == GROUP_AGENT:
            return "group:" + self.agent_id
        return self.agent_id

    def to_dict(self):
        return OrderedDict([("agent_type", self.agent_type), ("agent_id", self.agent_id),
                            ("access", self.access)])

    def __eq__(self, other):
        return isinstance(other, PermissionTemplateAccess) and \
               self.to_dict() == other.to_dict()


class PermissionTemplate(object):
    """
    the set of access grants attached to a collection
    """

    def __init__(self, source_id: str, accesses: Iterable[PermissionTemplateAccess] = None):
        self.source_id = source_id
        self._accesses = list(accesses or [])

    @property
    def accesses(self) -> List[PermissionTemplateAccess]:
        return list(self._accesses)

    def grant(self, agent_type: str, agent_id: str, access: str) -> bool:
        """
        add an access grant.  Nothing is added if an identical grant exists.
        :return:  True if the grant was added
        """
        acc = PermissionTemplateAccess(agent_type, agent_id, access)
        if acc in self._accesses:
            return False
        self._accesses.append(acc)
        return True

    def principals_for(self, access: str) -> List[str]:
        return [a.principal for a in self._accesses if a.access == access]

    def to_dict(self):
        return OrderedDict([("source_id", self.source_id),
                            ("accesses", [a.to_dict() for a in self._accesses])])

    @classmethod
    def from_dict(cls, data: Mapping) -> "PermissionTemplate":
        return cls(data['source_id'],
                   [PermissionTemplateAccess(a['agent_type'], a['agent_id'], a['access'])
                    for a in data.get('accesses', [])])

    def __eq__(self, other):
        return isinstance(other, PermissionTemplate) and self.to_dict() == other.to_dict()


class PermissionTemplateRegistry(object):
    """
    the permission templates that have been attached to collections, looked up by collection id.
    Templates are saved as entries in the object store; a template changed after it is obtained
    must be passed to :py:meth:`save` for the change to persist.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    def _all(self) -> List[PermissionTemplate]:
        return [PermissionTemplate.from_dict(d) for d in self.store.iter_entries(TEMPLATES_COLL)]

    @property
    def count(self) -> int:
        return len(self._all())

    @property
    def access_count(self) -> int:
        return sum(len(t.accesses) for t in self._all())

    def for_source(self, source_id: str) -> Union[PermissionTemplate, None]:
        if not source_id:
            return None
        data = self.store.get_entry(TEMPLATES_COLL, source_id)
        return PermissionTemplate.from_dict(data) if data else None

    def create(self, source_id: str) -> PermissionTemplate:
        """
        create and register a template for the collection with the given id, or return the one
        already registered for it
        """
        out = PermissionTemplate(source_id)
        try:
            self.store.put_entry(TEMPLATES_COLL, source_id, out.to_dict(), create=True)
        except AlreadyExists:
            out = self.for_source(source_id) or out
        return out

    def save(self, template: PermissionTemplate):
        self.store.put_entry(TEMPLATES_COLL, template.source_id, template.to_dict())

    def remove(self, source_id: str):
        self.store.delete_entry(TEMPLATES_COLL, source_id)


class Collection(object):
    """
    a collection: a stored (or, when only built, not yet stored) object plus its resolved
    collection type and permission template
    """

    def __init__(self, obj: StoredObject, collection_type: CollectionType,
                 permission_template: PermissionTemplate = None, persisted: bool = False,
                 has_id: bool = True):
        self.object = obj
        self._has_id = has_id
        self.collection_type = collection_type
        self.permission_template = permission_template
        self.persisted = persisted

    @property
    def id(self) -> str:
        """
        the collection's identifier, or None if it has not been assigned one
        """
        return self.object.id if self._has_id else None

    @property
    def title(self) -> List[str]:
        return self.object.values("title")

    @property
    def depositor(self) -> str:
        return self.object.depositor

    @property
    def collection_type_gid(self) -> str:
        gids = self.object.related(HAS_COLLECTION_TYPE)
        return gids[0] if gids else None

    def to_solr(self) -> SearchDocument:
        """
        return the search document for this collection
        """
        return project(self.object, self.permission_template)


class CollectionService(ScholarSphereSystem):
    """
    a service for building and creating collections on behalf of a user.

    ``build`` prepares a collection without saving it to the store.  A permission template is only
    made when requested, and a search document is only published when requested.  ``create`` saves
    the collection, always gives it a permission template, and publishes its search document.

    This service recognizes the following configuration parameters:

    ``default_type``
        an object overriding the properties of the default "User Collection" type
    """

    def __init__(self, store: ObjectStore, projector: IndexProjector, minter: NoidMinter,
                 types: CollectionTypeRegistry = None, templates: PermissionTemplateRegistry = None,
                 config: Mapping = None, who: Agent = None, log: Logger = None):
        super(CollectionService, self).__init__("Collection Service", "REPO")
        if config is None:
            config = {}
        self.cfg = config
        self.store = store
        self.projector = projector
        self.minter = minter
        if types is None:
            types = CollectionTypeRegistry(store, self.cfg.get('default_type'))
        self.types = types
        if templates is None:
            templates = PermissionTemplateRegistry(store)
        self.templates = templates
        if not who:
            who = Agent("repo.collections", Agent.USER, Agent.ANONYMOUS, Agent.PUBLIC)
        self.who = who
        if not log:
            log = self.getSysLogger().getChild("collections")
        self.log = log

    def resolve_type(self, collection_type_settings: Iterable[str] = None,
                     collection_type_gid: str = None) -> CollectionType:
        """
        determine the type for a new collection:  if settings are given, a new type having those
        settings is created; otherwise, the type with the given gid is used; otherwise, the default
        type is used.
        :raises ValidationError:  if a setting is not recognized or the gid is unknown
        """
        if collection_type_settings:
            try:
                return self.types.create_from_settings(collection_type_settings)
            except ValueError as ex:
                raise ValidationError(str(ex))
        if collection_type_gid:
            out = self.types.get(collection_type_gid)
            if not out:
                raise ValidationError("collection_type_gid: unknown collection type: "+collection_type_gid)
            return out
        return self.types.find_or_create_default()

    def collection_type_for(self, obj: StoredObject) -> CollectionType:
        """
        return the type of the given stored collection
        """
        gids = obj.related(HAS_COLLECTION_TYPE)
        ctype = self.types.get(gids[0]) if gids else None
        return ctype or self.types.find_or_create_default()

    def _make(self, user: str, metadata, collection_type_settings, collection_type_gid,
              with_permission_template, assign_id: bool) -> Collection:
        if not user:
            if self.who.is_anonymous:
                raise AccessDenied(None, "create collections", anonymous=True)
            user = self.who.actor
        if not metadata:
            metadata = {}

        ctype = self.resolve_type(collection_type_settings, collection_type_gid)
        need_id = assign_id or bool(with_permission_template)
        id = self.minter.mint() if need_id else "_new_collection"

        md = check_fields(COLLECTION, metadata, True, id)[0]
        obj = StoredObject(OrderedDict([("id", id), ("model", COLLECTION), ("metadata", md)]))
        apply_depositor_metadata(obj, user, self.log)
        obj.add_relationship(HAS_COLLECTION_TYPE, ctype.gid)

        tmpl = None
        if with_permission_template:
            tmpl = self._make_template(id, user, with_permission_template)
        return Collection(obj, ctype, tmpl, has_id=need_id)

    def _make_template(self, id: str, user: str, grants) -> PermissionTemplate:
        tmpl = self.templates.create(id)
        tmpl.grant(USER_AGENT, user, MANAGE)
        if isinstance(grants, Mapping):
            for access in ACCESS_TYPES:
                for u in grants.get(access+"_users", []):
                    tmpl.grant(USER_AGENT, u, access)
                for g in grants.get(access+"_groups", []):
                    tmpl.grant(GROUP_AGENT, g, access)
        self.templates.save(tmpl)
        return tmpl

    def build(self, user: str = None, metadata: Mapping = None,
              collection_type_settings: Iterable[str] = None, collection_type_gid: str = None,
              with_permission_template: Union[bool, Mapping] = False,
              with_solr_document: bool = False) -> Collection:
        """
        prepare a collection without saving it to the store.

        :param str user:  the identifier of the user making the collection (default: this service's
                          user)
        :param dict metadata:  the collection's descriptive metadata
        :param list collection_type_settings:  capability settings (e.g. ``["not_discoverable"]``)
                          that call for a new collection type
        :param str collection_type_gid:  the gid of an existing collection type to use
        :param with_permission_template:  if True, a permission template granting the user manage
                          access is made; if a mapping, the template also grants the accesses it lists
                          under ``manage_users``, ``deposit_users``, ``view_users`` (and the
                          corresponding ``_groups`` properties).
        :param bool with_solr_document:  if True, the collection's search document is published
        """
        col = self._make(user, metadata, collection_type_settings, collection_type_gid,
                         with_permission_template, with_solr_document)
        if with_solr_document:
            self.projector.publish(col.object, col.permission_template)
        return col

    def create(self, user: str = None, metadata: Mapping = None,
               collection_type_settings: Iterable[str] = None, collection_type_gid: str = None,
               with_permission_template: Union[bool, Mapping] = True) -> Collection:
        """
        create a collection, saving it to the store and publishing its search document.  A
        permission template granting the user manage access is always made.  The parameters are as
        for :py:meth:`build`.
        """
        col = self._make(user, metadata, collection_type_settings, collection_type_gid,
                         with_permission_template or True, True)
        obj = col.object
        try:
            col.object = self.store.create(obj.id, obj.metadata, None, obj.depositor,
                                           model=COLLECTION, relationships=obj.relationships,
                                           who=self.who)
        except Exception:
            self.templates.remove(obj.id)
            raise
        col.persisted = True
        self.projector.publish(col.object, col.permission_template)
        self.log.info("Created collection %s of type %s", col.id, col.collection_type.machine_id)
        return col

    def get(self, id: str) -> Collection:
        """
        return the stored collection with the given identifier
        :raises ObjectNotFound:  if the collection does not exist
        """
        obj = self.store.get(id)
        if obj.model != COLLECTION:
            raise ObjectNotFound(id)
        return Collection(obj, self.collection_type_for(obj), self.templates.for_source(id), True)
