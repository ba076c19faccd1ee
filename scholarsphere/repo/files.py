"""
a module providing the business service for creating, viewing, updating, and deleting generic files.

The :py:class:`GenericFileService` is attached to a particular user at construction time (as given
by an :py:class:`~scholarsphere.utils.prov.Agent` instance); its operations check that user's access
before touching the object store and publish a fresh search document after every change, before
returning to the caller.
"""
from logging import Logger
from collections import OrderedDict
from collections.abc import Mapping
from typing import Callable, List, Tuple

from .base import (ObjectStore, StoredObject, ContentVersion, GENERIC_FILE, PUBLIC_GROUP,
                   ValidationError, AccessDenied, ObjectNotFound)
from .access import check_access, require_access, VIEW, EDIT, DELETE
from .index import IndexProjector, format_date
from .ingest import UploadIngestor, Upload, IngestResult, upload_manifest
from .minter import NoidMinter
from .schema import FileUpdateRequest, terms_listing
from .. import ScholarSphereSystem
from ..utils.prov import Agent

class GenericFileService(ScholarSphereSystem):
    """
    a service for accessing and updating generic files on behalf of a user.

    This service recognizes the following configuration parameters:

    ``superusers``
        a list of user identifiers that are allowed to view, edit, and delete any file
    ``public_group``
        the identity that represents all users, including anonymous ones (default: ``group:public``)
    ``files_url``
        the base URL for files used in upload manifests (default: ``/files``)
    """

    def __init__(self, store: ObjectStore, projector: IndexProjector, minter: NoidMinter = None,
                 config: Mapping = None, who: Agent = None, log: Logger = None):
        super(GenericFileService, self).__init__("Generic File Service", "REPO")
        if config is None:
            config = {}
        self.cfg = config
        self.store = store
        self.projector = projector
        self.minter = minter
        if not who:
            who = Agent("repo.files", Agent.USER, Agent.ANONYMOUS, Agent.PUBLIC)
        self.who = who
        if not log:
            log = self.getSysLogger().getChild("files")
        self.log = log
        self.ingestor = UploadIngestor(store, projector, minter, config, self.log.getChild("ingest"))

    @property
    def user(self) -> Agent:
        """
        the Agent instance representing the user that this service acts on behalf of.
        """
        return self.who

    @property
    def files_url(self):
        return self.ingestor.files_url

    def _superusers(self):
        return self.cfg.get('superusers', [])

    def _public(self):
        return self.cfg.get('public_group', PUBLIC_GROUP)

    def can(self, obj: StoredObject, action: str) -> bool:
        return check_access(obj, self.who, action, self._superusers(), self._public())

    def _get_for(self, id: str, action: str) -> StoredObject:
        obj = self.store.get(id)
        if obj.model != GENERIC_FILE:
            raise ObjectNotFound(id)
        require_access(obj, self.who, action, self._superusers(), self._public())
        return obj

    def list_files(self) -> List[Mapping]:
        """
        return the upload manifests of all the files the user is allowed to view
        """
        return [upload_manifest(obj, self.files_url) for obj in self.store.iter_objects(GENERIC_FILE)
                if self.can(obj, VIEW)]

    def new_file(self) -> Mapping:
        """
        return a freshly minted identifier and the listing of metadata terms for a new file
        :raises AccessDenied:  if the user is anonymous
        """
        if self.who.is_anonymous:
            raise AccessDenied(None, "create files", anonymous=True)
        return OrderedDict([
            ("id", self.minter.mint() if self.minter else None),
            ("terms", terms_listing())
        ])

    def upload(self, uploads: List[Upload], cancelled: Callable[[], bool] = None) -> List[IngestResult]:
        """
        ingest the given uploaded files, each into a new object (or as a new version of an existing
        one)
        """
        return [self.ingestor.ingest(up, self.who, cancelled) for up in uploads]

    def describe(self, obj: StoredObject) -> Mapping:
        """
        return a JSON-ready description of the given object
        """
        out = OrderedDict([
            ("id", obj.id),
            ("model", obj.model),
            ("schema", obj.schema_version),
            ("depositor", obj.depositor),
            ("label", obj.label),
            ("metadata", obj.metadata),
            ("relationships", [list(r) for r in obj.relationships]),
            ("versions", [self._describe_version(obj.id, v) for v in obj.versions]),
            ("date_uploaded", format_date(obj.date_uploaded)),
            ("date_modified", format_date(obj.date_modified)),
            ("permissions", obj.acls.to_dict()),
            ("can_edit", self.can(obj, EDIT))
        ])
        return out

    def _describe_version(self, id: str, vers: ContentVersion):
        out = OrderedDict(vers._asdict())
        out.pop("key", None)
        out["created"] = format_date(vers.created)
        out["url"] = "%s/%s/content/%s" % (self.files_url.rstrip("/"), id, vers.id)
        return out

    def get_file(self, id: str) -> Mapping:
        """
        return a description of the file with the given identifier
        :raises ObjectNotFound:  if the file does not exist
        :raises AccessDenied:    if the user is not allowed to view the file
        """
        obj = self._get_for(id, VIEW)
        return self.describe(obj)

    def edit_terms(self, id: str) -> Mapping:
        """
        return the data needed to present an edit form for the file: the metadata terms and their
        current values
        """
        obj = self._get_for(id, EDIT)
        return OrderedDict([
            ("id", obj.id),
            ("terms", terms_listing()),
            ("metadata", obj.metadata),
            ("versions", [v.id for v in obj.versions])
        ])

    def update_file(self, id: str, req: FileUpdateRequest) -> StoredObject:
        """
        update the file according to the given request.  The request is applied in this order:

          1. if a ``revision`` other than the latest is named, that version's content is copied
             into a new version;
          2. if replacement content was uploaded, it is then added as a further version;
          3. the named metadata fields are replaced (the modification date is always updated).

        The file's search document is republished before this method returns.
        :raises ObjectNotFound:  if the file does not exist
        :raises AccessDenied:    if the user is not allowed to edit the file
        :raises ValidationError: if the request names an unknown revision
        :raises IndexOutOfSync:  if the search document could not be republished
        """
        obj = self._get_for(id, EDIT)
        with self.store.locked(id):
            latest = obj.latest_version
            if req.revision and (not latest or req.revision != latest.id):
                if not obj.version(req.revision):
                    raise ValidationError("revision: %s is not a version of this file" % req.revision, id)
                self.store.revert_to(id, req.revision, self.who)
                self.log.info("%s: restored content from %s", id, req.revision)
            if req.has_content:
                self.store.add_version(id, req.filedata, req.filename, req.mime_type, self.who)

            if req.ignored:
                self.log.warning("%s: ignoring unrecognized update parameters: %s", id,
                                 ", ".join(req.ignored))
            obj = self.store.update(id, req.metadata, self.who)

        self.projector.publish(obj)
        return obj

    def delete_file(self, id: str):
        """
        delete the file and remove its search document
        :raises ObjectNotFound:  if the file does not exist
        :raises AccessDenied:    if the user is not allowed to delete the file
        """
        self._get_for(id, DELETE)
        self.store.delete(id, self.who)
        self.projector.retract(id)

    def audit(self, id: str) -> Mapping:
        """
        return the audit log for the file along with the results of checking the fixity of each
        of its content versions
        """
        self._get_for(id, VIEW)
        fixity = self.store.verify_fixity(id)
        return OrderedDict([
            ("id", id),
            ("audit_log", self.store.audit(id)),
            ("fixity", fixity),
            ("verified", all(f['verified'] for f in fixity))
        ])

    def get_content(self, id: str, vid: str = None) -> Tuple[bytes, ContentVersion]:
        """
        return the bytes of the latest (or a given) content version along with its description
        :raises ObjectNotFound:  if the file or the version does not exist
        """
        obj = self._get_for(id, VIEW)
        vers = obj.version(vid) if vid else obj.latest_version
        if not vers:
            raise ObjectNotFound(id, vid or "content")
        return self.store.get_version(id, vers.id), vers
