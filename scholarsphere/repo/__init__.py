"""
repo:  the repository core for generic files and collections.

----------------------
Typical Use
----------------------

Access to the repository starts by assembling a :py:class:`Repository` from a configuration.  The
repository holds the injected handles to the object store and the search index; services that act
on behalf of a particular user are obtained from it.

.. code-block::
   :caption: Example use of the repo module

   from scholarsphere import repo

   config = {
       "store": { "factory": "fsbased", "root_dir": "/var/scholarsphere/store" },
       "index": { "factory": "solr", "solr_url": "http://localhost:8983/solr/scholarsphere" }
   }
   with repo.Repository(config) as repository:
       files = repository.file_service(agent)
       results = files.upload([repo.Upload("data.csv", data, "text/csv", batch_id)])

----------------------------
Repository Configuration
----------------------------

The :py:class:`Repository` recognizes these top-level configuration parameters:

``store``
    the configuration for the object store.  Its ``factory`` parameter selects the backend: one of
    ``inmem`` (default), ``fsbased``, or ``mongo``.  Other parameters are passed to the backend's
    factory (see :py:mod:`.inmem`, :py:mod:`.fsbased`, and :py:mod:`.mongo`).
``index``
    the configuration for the search index (see :py:mod:`.index`); its ``factory`` parameter is
    either ``inmem`` (default) or ``solr``.
``minter``
    the configuration for the identifier minter (see :py:class:`~.minter.NoidMinter`)
``access``
    access control parameters: ``superusers`` and ``public_group``
``collections``
    the configuration for the collection service (see :py:class:`~.collections.CollectionService`)
"""
import os
from logging import Logger
from collections.abc import Mapping
from copy import deepcopy

from .base import *
from .base import ObjectStoreFactory, ObjectStore, sys
from .index import IndexClient, IndexProjector, create_index_client, project, SearchDocument
from .ingest import Upload, IngestResult, UploadIngestor, upload_manifest
from .minter import NoidMinter
from .files import GenericFileService
from .collections import (CollectionService, CollectionTypeRegistry, PermissionTemplateRegistry,
                          CollectionType, PermissionTemplate)
from ..config import ConfigurationException, merge_config
from ..utils.prov import Agent

MONGODB_URL_ENV = "SCHOLARSPHERE_MONGODB_URL"

def create_store_factory(config: Mapping) -> ObjectStoreFactory:
    """
    create an ObjectStoreFactory according to the ``factory`` parameter in the given store
    configuration.  If the ``SCHOLARSPHERE_MONGODB_URL`` environment variable is set, it overrides
    the ``db_url`` parameter of a ``mongo`` store.
    :raises ConfigurationException:  if the factory type is not supported
    """
    ftype = config.get('factory', 'inmem')
    if ftype == 'inmem':
        from .inmem import InMemoryObjectStoreFactory
        return InMemoryObjectStoreFactory(config)
    if ftype == 'fsbased':
        from .fsbased import FSBasedObjectStoreFactory
        return FSBasedObjectStoreFactory(config)
    if ftype == 'mongo':
        from .mongo import MongoObjectStoreFactory
        return MongoObjectStoreFactory(config, os.environ.get(MONGODB_URL_ENV))
    raise ConfigurationException("store.factory: unsupported store type: "+str(ftype))


class Repository(object):
    """
    the assembly of the repository's backend handles: an object store, a search index client (with
    its projector), an identifier minter, and the collection registries.  Use :py:meth:`connect`
    and :py:meth:`disconnect` (or a ``with`` statement) to manage the backend connections.
    """

    def __init__(self, config: Mapping, store_factory: ObjectStoreFactory = None,
                 index_client: IndexClient = None, log: Logger = None):
        if config is None:
            config = {}
        self.cfg = config
        if not log:
            log = sys.getSysLogger()
        self.log = log

        if not store_factory:
            store_factory = create_store_factory(self.cfg.get('store', {}))
        self.store = store_factory.create_store(log=self.log.getChild("store"))

        if not index_client:
            index_client = create_index_client(self.cfg.get('index', {}))
        self.index = index_client
        self.projector = IndexProjector(self.index, self.cfg.get('index', {}), self.log.getChild("index"))
        self.minter = NoidMinter(self.cfg.get('minter', {}), self.store, self.log.getChild("minter"))

        colcfg = self.cfg.get('collections', {})
        self.collection_types = CollectionTypeRegistry(self.store, colcfg.get('default_type'))
        self.permission_templates = PermissionTemplateRegistry(self.store)

    def connect(self):
        self.store.connect()
        self.index.connect()

    def disconnect(self):
        try:
            self.index.disconnect()
        finally:
            self.store.disconnect()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, e1, e2, e3):
        self.disconnect()
        return False

    def _service_config(self, extra: Mapping = None) -> Mapping:
        out = deepcopy(self.cfg.get('access', {}))
        if extra:
            out = merge_config(extra, out)
        return out

    def file_service(self, who: Agent, config: Mapping = None, log: Logger = None) -> GenericFileService:
        """
        return a service for accessing generic files on behalf of the given user
        """
        return GenericFileService(self.store, self.projector, self.minter,
                                  self._service_config(config), who, log or self.log.getChild("files"))

    def collection_service(self, who: Agent, log: Logger = None) -> CollectionService:
        """
        return a service for building and creating collections on behalf of the given user
        """
        return CollectionService(self.store, self.projector, self.minter, self.collection_types,
                                 self.permission_templates, self.cfg.get('collections', {}), who,
                                 log or self.log.getChild("collections"))

    def reindex(self, ids=None):
        """
        rebuild the search documents for the given objects (or all objects)
        """
        return self.projector.reindex(self.store, ids, self.permission_templates)
