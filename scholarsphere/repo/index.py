"""
The index projector: deriving the searchable document for a stored object and keeping the search
index in step with the object store.

A :py:class:`SearchDocument` is a denormalized, flat rendering of a
:py:class:`~scholarsphere.repo.base.StoredObject` that follows the Solr dynamic-field naming
conventions (``_ssim`` for multi-valued strings, ``_tesim`` for multi-valued text, ``_dtsi`` for
dates, etc.).  It is never authoritative:  it can always be rebuilt from the store with
:py:func:`project`.

The :py:class:`IndexProjector` publishes documents to (and retracts them from) an
:py:class:`IndexClient`.  Because the store and the index are separate systems, a failure to publish
after a successful store mutation is reported as an
:py:class:`~scholarsphere.repo.base.IndexOutOfSync` exception; the ``reindex`` admin command repairs
such divergence.
"""
import time, datetime, logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Mapping
from copy import deepcopy
from typing import Iterable, List, Union

import requests

from .base import (StoredObject, ObjectStore, ACLs, COLLECTION, IndexOutOfSync,
                   RepositoryException, ObjectNotFound, sys)
from ..utils.logging import blab
from ..config import ConfigurationException

DEF_RETRIES = 2
DEF_RETRY_DELAY = 0.5
DEF_TIMEOUT = 10.0

class IndexUnavailable(RepositoryException):
    """
    an exception indicating that the search index could not be reached or refused a request
    """
    pass

class SearchDocument(OrderedDict):
    """
    a search document: a flat mapping of index field names to values
    """

    @property
    def id(self) -> str:
        return self.get('id')

    @property
    def model(self) -> str:
        return (self.get('has_model_ssim') or [None])[0]

def format_date(epoch: float) -> str:
    """
    format an epoch time as an ISO 8601 date string in UTC, the form expected for ``_dtsi`` fields
    """
    out = datetime.datetime.fromtimestamp(epoch, datetime.timezone.utc).isoformat(timespec='milliseconds')
    if out.endswith("+00:00"):
        out = out[:-len("+00:00")] + "Z"
    return out

def _split_principals(ids: Iterable[str]):
    persons, groups = [], []
    for id in ids:
        if id.startswith("group:"):
            groups.append(id[len("group:"):])
        else:
            persons.append(id)
    return persons, groups

def _add_uniq(lst, vals):
    for v in vals:
        if v not in lst:
            lst.append(v)

def project(obj: StoredObject, template=None) -> SearchDocument:
    """
    derive the search document for the given object.  This function has no side effects, and its
    output depends only on its inputs.

    :param StoredObject obj:  the object to project
    :param template:  the :py:class:`~scholarsphere.repo.collections.PermissionTemplate` attached
                      to the object (if the object is a collection that has one); its manage
                      principals are added to the edit lists, and its deposit and view principals
                      are added to the read lists.
    """
    doc = SearchDocument()
    doc['id'] = obj.id
    doc['has_model_ssim'] = [obj.model]
    if obj.depositor:
        doc['depositor_ssim'] = [obj.depositor]

    edits, editgrps = _split_principals(obj.acls.iter_perm_granted(ACLs.EDIT))
    reads, readgrps = _split_principals(obj.acls.iter_perm_granted(ACLs.READ))
    if template is not None:
        mp, mg = _split_principals(template.principals_for("manage"))
        _add_uniq(edits, mp)
        _add_uniq(editgrps, mg)
        for access in ("deposit", "view"):
            rp, rg = _split_principals(template.principals_for(access))
            _add_uniq(reads, rp)
            _add_uniq(readgrps, rg)

    doc['edit_access_person_ssim'] = edits
    doc['read_access_person_ssim'] = reads
    doc['edit_access_group_ssim'] = editgrps
    doc['read_access_group_ssim'] = readgrps
    doc['date_uploaded_dtsi'] = format_date(obj.date_uploaded)
    doc['date_modified_dtsi'] = format_date(obj.date_modified)

    for field, vals in obj.metadata.items():
        if vals:
            doc[field+"_tesim"] = list(vals)

    for pred, target in obj.relationships:
        doc.setdefault(pred+"_ssim", []).append(target)

    latest = obj.latest_version
    if latest:
        doc['label_tesim'] = [latest.label] if latest.label else []
        doc['mime_type_ssi'] = latest.mime_type
        doc['file_size_lts'] = latest.size
    doc['version_count_isi'] = len(obj.versions)

    if obj.model == COLLECTION:
        doc['collection_type_gid_ssim'] = obj.related("hasCollectionType")
        doc.pop("hasCollectionType_ssim", None)

    return doc


class IndexClient(ABC):
    """
    a connection to a search index
    """

    def connect(self):
        pass

    def disconnect(self):
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, e1, e2, e3):
        self.disconnect()
        return False

    @abstractmethod
    def add(self, doc: Mapping):
        """
        add the document to the index, replacing any previous document with the same id
        :raises IndexUnavailable:  if the index cannot be updated
        """
        raise NotImplementedError()

    @abstractmethod
    def delete(self, id: str):
        """
        remove the document with the given id from the index.  Nothing happens if no such document
        is indexed.
        :raises IndexUnavailable:  if the index cannot be updated
        """
        raise NotImplementedError()

    @abstractmethod
    def get(self, id: str) -> Union[SearchDocument, None]:
        """
        return the indexed document with the given id or None if it is not indexed
        """
        raise NotImplementedError()

    @abstractmethod
    def select(self, **constraints) -> List[SearchDocument]:
        """
        return the documents that have all of the given field values.  A constraint value matches
        a multi-valued field if it is one of the field's values.
        """
        raise NotImplementedError()


class InMemoryIndex(IndexClient):
    """
    an index kept in memory.  This is intended for testing and single-process development servers.
    """

    def __init__(self, docs: Mapping = None):
        self._docs = OrderedDict()
        if docs:
            self._docs.update(deepcopy(docs))

    def add(self, doc):
        self._docs[doc['id']] = deepcopy(doc)

    def delete(self, id):
        self._docs.pop(id, None)

    def get(self, id):
        doc = self._docs.get(id)
        return SearchDocument(deepcopy(doc)) if doc is not None else None

    def select(self, **constraints):
        out = []
        for doc in self._docs.values():
            if all(_field_matches(doc.get(k), v) for k, v in constraints.items()):
                out.append(SearchDocument(deepcopy(doc)))
        return out

    def __len__(self):
        return len(self._docs)

def _field_matches(fieldval, target):
    if isinstance(fieldval, (list, tuple)):
        return target in fieldval
    return fieldval == target


class SolrIndex(IndexClient):
    """
    a client for a Solr core.  This implementation recognizes the following configuration
    parameters:

    ``solr_url``
        (str) *required*.  the base URL of the Solr core (e.g. ``http://localhost:8983/solr/scholarsphere``)
    ``timeout``
        (float) the number of seconds to wait for Solr to respond (default: 10).
    """

    def __init__(self, config: Mapping):
        self.cfg = config
        if not config.get('solr_url'):
            raise ConfigurationException("SolrIndex: missing required config parameter: solr_url")
        self.baseurl = config['solr_url'].rstrip('/')
        self.timeout = config.get('timeout', DEF_TIMEOUT)

    def _request(self, method, relurl, **kw):
        url = self.baseurl + relurl
        try:
            resp = requests.request(method, url, timeout=self.timeout, **kw)
        except requests.RequestException as ex:
            raise IndexUnavailable("Unable to reach Solr at %s: %s" % (url, str(ex)), cause=ex)

        if resp.status_code >= 300:
            raise IndexUnavailable("Solr request failed (%s %s): %d %s" %
                                   (method, relurl, resp.status_code, resp.reason))
        try:
            return resp.json()
        except ValueError as ex:
            raise IndexUnavailable("Solr response is not parseable JSON: "+str(ex), cause=ex)

    def add(self, doc):
        self._request("POST", "/update", params={"commit": "true"}, json=[dict(doc)])

    def delete(self, id):
        self._request("POST", "/update", params={"commit": "true"}, json={"delete": {"id": id}})

    def get(self, id):
        data = self._request("GET", "/get", params={"id": id})
        doc = data.get('doc')
        return SearchDocument(doc) if doc else None

    def select(self, **constraints):
        q = " AND ".join('%s:"%s"' % (k, str(v).replace('"', '\\"')) for k, v in constraints.items())
        data = self._request("GET", "/select", params={"q": q or "*:*", "wt": "json"})
        return [SearchDocument(d) for d in data.get('response', {}).get('docs', [])]


def create_index_client(config: Mapping) -> IndexClient:
    """
    create an IndexClient according to the ``factory`` parameter in the given configuration
    (either ``inmem`` or ``solr``).
    """
    ftype = config.get('factory', 'inmem')
    if ftype == 'inmem':
        return InMemoryIndex()
    if ftype == 'solr':
        return SolrIndex(config)
    raise ConfigurationException("index.factory: unsupported index type: "+str(ftype))


class IndexProjector(object):
    """
    a class that keeps an index in sync with the object store by publishing a freshly derived search
    document after every mutation.  Publishing and retracting are idempotent, so failed attempts are
    retried a bounded number of times with an increasing delay.

    This class recognizes the following configuration parameters:

    ``retries``
        (int) the number of times to retry a failed publish or retract (default: 2)
    ``retry_delay``
        (float) the seconds to wait before the first retry; the delay doubles for each subsequent
        retry (default: 0.5)
    """

    def __init__(self, client: IndexClient, config: Mapping = None, log: logging.Logger = None):
        if config is None:
            config = {}
        self.client = client
        self.cfg = config
        if not log:
            log = sys.getSysLogger().getChild("index")
        self.log = log
        self.retries = self.cfg.get('retries', DEF_RETRIES)
        self.retry_delay = self.cfg.get('retry_delay', DEF_RETRY_DELAY)

    def _with_retries(self, id, what, func, *args):
        delay = self.retry_delay
        attempt = 0
        while True:
            try:
                return func(*args)
            except IndexUnavailable as ex:
                if attempt >= self.retries:
                    err = IndexOutOfSync(id, cause=ex)
                    self.log.error("ALERT: %s: failed to %s search document after %d attempts: %s",
                                   id, what, attempt+1, str(ex))
                    raise err
                attempt += 1
                self.log.warning("%s: failed to %s search document (%s); retrying", id, what, str(ex))
                if delay > 0:
                    time.sleep(delay)
                delay *= 2

    def publish(self, obj: StoredObject, template=None) -> SearchDocument:
        """
        derive the search document for the given object and send it to the index
        :return:  the document that was published
        :raises IndexOutOfSync:  if the document could not be published
        """
        doc = project(obj, template)
        self._with_retries(obj.id, "publish", self.client.add, doc)
        blab(self.log, "%s: published search document", obj.id)
        return doc

    def retract(self, id: str):
        """
        remove the search document for the object with the given identifier from the index
        :raises IndexOutOfSync:  if the document could not be removed
        """
        self._with_retries(id, "retract", self.client.delete, id)
        blab(self.log, "%s: retracted search document", id)

    def reindex(self, store: ObjectStore, ids: Iterable[str] = None, templates=None) -> List[str]:
        """
        rebuild the search documents for objects in the given store.  Documents for requested
        identifiers that no longer exist in the store are retracted.
        :param ObjectStore store:  the store to read objects from
        :param ids:  the identifiers of the objects to reindex; if None, all objects are reindexed
        :param templates:  a :py:class:`~scholarsphere.repo.collections.PermissionTemplateRegistry`
                           to look up collection permission templates from
        :return:  the identifiers of the objects whose documents were published
        :raises IndexOutOfSync:  if any document could not be published
        """
        out = []
        if ids is None:
            objs = store.iter_objects()
        else:
            objs = []
            for id in ids:
                try:
                    objs.append(store.get(id))
                except ObjectNotFound:
                    self.log.info("%s: no longer in store; retracting", id)
                    self.retract(id)

        for obj in objs:
            tmpl = templates.for_source(obj.id) if templates is not None else None
            self.publish(obj, tmpl)
            out.append(obj.id)
        self.log.info("Reindexed %d object%s", len(out), "" if len(out) == 1 else "s")
        return out
