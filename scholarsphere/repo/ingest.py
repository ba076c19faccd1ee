"""
The upload ingestor: turning an uploaded blob into a stored, indexed object.

An upload moves through the following states:

``received``
    the upload has been accepted for processing
``validated``
    the upload is non-empty, has a file name, and its target can be resolved
``stored``
    the object was created (or the content was added as a new version of an existing object)
``indexed``
    the object's search document was published
``acknowledged``
    the result, including its jQuery-file-upload style manifest, was returned to the caller

An upload that fails before it is stored ends in the ``rejected`` state and leaves nothing behind.
An upload that fails after it is stored ends in the ``partially_failed`` state: the object exists,
but its search document may be stale (see :py:class:`~scholarsphere.repo.base.IndexOutOfSync`).
"""
import logging
from collections import OrderedDict
from collections.abc import Mapping
from typing import Callable, List

from .base import (ObjectStore, StoredObject, GENERIC_FILE, RepositoryException, ValidationError,
                   ObjectNotFound, AlreadyExists, AccessDenied, IndexOutOfSync, sys)
from .access import require_access, EDIT
from .index import IndexProjector
from .minter import NoidMinter
from .. import StateException
from ..utils.prov import Agent

RECEIVED = "received"
VALIDATED = "validated"
STORED = "stored"
INDEXED = "indexed"
ACKNOWLEDGED = "acknowledged"
REJECTED = "rejected"
PARTIALLY_FAILED = "partially_failed"

# the error token reported to upload clients for any rejected upload
UPLOAD_FAILURE = "custom_failure"

PART_OF = "isPartOf"
BATCH_PREFIX = "info:fedora/"

DEF_FILES_URL = "/files"

class Upload(object):
    """
    a description of a single uploaded file
    """
    def __init__(self, filename: str, content: bytes, mime_type: str = None, batch_id: str = None,
                 target_id: str = None, metadata: Mapping = None):
        """
        :param str  filename:  the name of the uploaded file
        :param bytes content:  the uploaded bytes
        :param str mime_type:  the MIME type of the content, as reported by the client
        :param str  batch_id:  the identifier of the batch the upload is part of (optional)
        :param str target_id:  the identifier of an existing object that the upload is a new version
                               of; if None, a new object is created.
        :param dict metadata:  initial metadata for a new object
        """
        self.filename = filename
        self.content = content
        self.mime_type = mime_type
        self.batch_id = batch_id
        self.target_id = target_id
        self.metadata = metadata or {}

class IngestResult(object):
    """
    the outcome of an ingest: the final state, the object (if it was stored), the manifest (if it
    was acknowledged), and the error that stopped it (if it failed)
    """
    def __init__(self, state: str, obj: StoredObject = None, manifest: Mapping = None,
                 error: Exception = None, history: List[str] = None):
        self.state = state
        self.object = obj
        self.manifest = manifest
        self.error = error
        self.history = history or []

    @property
    def succeeded(self) -> bool:
        return self.state == ACKNOWLEDGED

    @property
    def error_token(self) -> str:
        """
        the error token to report to the client, or None if the upload succeeded
        """
        if self.state in (REJECTED, PARTIALLY_FAILED):
            return UPLOAD_FAILURE
        return None

    def __str__(self):
        return "<IngestResult %s: %s>" % (self.object.id if self.object else "-", self.state)

def upload_manifest(obj: StoredObject, files_url: str = DEF_FILES_URL) -> Mapping:
    """
    return the jQuery-file-upload style description of an uploaded object
    """
    files_url = files_url.rstrip('/')
    latest = obj.latest_version
    return OrderedDict([
        ("id", obj.id),
        ("name", latest.label if latest else None),
        ("size", latest.size if latest else 0),
        ("url", "%s/%s" % (files_url, obj.id)),
        ("delete_url", "%s/%s" % (files_url, obj.id)),
        ("delete_type", "DELETE")
    ])

class _Cancelled(Exception):
    pass

class UploadIngestor(object):
    """
    a class that drives uploads through the ingest states.  The store, the index projector, and the
    minter it uses are injected at construction time.

    This class recognizes the following configuration parameters:

    ``files_url``
        the base URL used to build the ``url`` and ``delete_url`` properties of manifests
        (default: ``/files``)
    ``superusers``
        the identifiers of users that may add versions to any object
    """

    def __init__(self, store: ObjectStore, projector: IndexProjector, minter: NoidMinter = None,
                 config: Mapping = None, log: logging.Logger = None):
        if config is None:
            config = {}
        self.store = store
        self.projector = projector
        self.minter = minter
        self.cfg = config
        if not log:
            log = sys.getSysLogger().getChild("ingest")
        self.log = log

    @property
    def files_url(self) -> str:
        return self.cfg.get('files_url', DEF_FILES_URL)

    def ingest(self, upload: Upload, who: Agent, cancelled: Callable[[], bool] = None) -> IngestResult:
        """
        process an upload
        :param Upload upload:  the upload to process
        :param Agent     who:  the user uploading the file; this user becomes the depositor of a new
                               object.
        :param cancelled:  a function that returns True if the client has cancelled the upload.  A
                           cancellation noticed before the upload is stored leaves nothing behind;
                           one noticed afterward only suppresses the acknowledgment.
        :return:  the result of the ingest; its ``state`` is one of ``acknowledged``, ``rejected``,
                  ``partially_failed``, or (when cancelled after being stored) ``indexed``.
        """
        if cancelled is None:
            cancelled = lambda: False
        history = [RECEIVED]

        # received -> validated
        try:
            if cancelled():
                raise _Cancelled()
            newid = self._validate(upload, who)
            history.append(VALIDATED)
            if cancelled():
                raise _Cancelled()
        except _Cancelled:
            self.log.info("Upload of %s cancelled before it was stored", upload.filename)
            history.append(REJECTED)
            return IngestResult(REJECTED, history=history)
        except (RepositoryException, StateException) as ex:
            self.log.warning("Upload of %s rejected: %s", upload.filename, str(ex))
            history.append(REJECTED)
            return IngestResult(REJECTED, error=ex, history=history)

        # validated -> stored
        try:
            obj = self._store(upload, who, newid)
            history.append(STORED)
        except RepositoryException as ex:
            self.log.error("Upload of %s failed to be stored: %s", upload.filename, str(ex))
            history.append(REJECTED)
            return IngestResult(REJECTED, error=ex, history=history)

        # stored -> indexed; this happens even when the client has cancelled
        try:
            self.projector.publish(obj)
            history.append(INDEXED)
        except IndexOutOfSync as ex:
            history.append(PARTIALLY_FAILED)
            return IngestResult(PARTIALLY_FAILED, obj, error=ex, history=history)

        if cancelled():
            self.log.info("%s: upload cancelled after it was stored; not acknowledging", obj.id)
            return IngestResult(INDEXED, obj, history=history)

        history.append(ACKNOWLEDGED)
        return IngestResult(ACKNOWLEDGED, obj, upload_manifest(obj, self.files_url), history=history)

    def _validate(self, upload: Upload, who: Agent) -> str:
        errors = []
        if not upload.content:
            errors.append("file is empty")
        if not upload.filename:
            errors.append("file name is missing")
        if who is None or who.is_anonymous:
            raise AccessDenied(None, "upload files", upload.target_id, anonymous=True)
        if errors:
            raise ValidationError(objid=upload.target_id, errors=errors)

        if upload.target_id:
            obj = self.store.get(upload.target_id)
            require_access(obj, who, EDIT, self.cfg.get('superusers', []))
            return None

        if not self.minter:
            raise ValidationError("no identifier available for a new upload")
        return self.minter.mint()

    def _store(self, upload: Upload, who: Agent, newid: str) -> StoredObject:
        if upload.target_id:
            self.store.add_version(upload.target_id, upload.content, upload.filename,
                                   upload.mime_type, who)
            return self.store.get(upload.target_id)

        rels = []
        if upload.batch_id:
            rels.append((PART_OF, BATCH_PREFIX + upload.batch_id))
        else:
            self.log.warning("%s: unable to find batch to attach to", newid)

        obj = self.store.create(newid, upload.metadata, upload.content, who.actor, upload.filename,
                                upload.mime_type, GENERIC_FILE, rels, who=who)
        return obj
