"""
The request pipeline:  named stages that prepare a request on a file resource before the handler
acts on it.

A stage is a function that takes a :py:class:`RequestContext` and returns it (possibly updated); a
stage that determines that the request cannot proceed raises a :py:class:`PipelineError` carrying
the HTTP status to respond with.  Handlers declare the list of stages they need by name (see
:py:data:`STAGES`) and run them with :py:func:`run_pipeline`.
"""
from urllib.parse import unquote
from collections.abc import Mapping
from typing import Callable, List, Union

from ..base import (GENERIC_FILE, RepositoryException, ValidationError, ObjectNotFound,
                    AccessDenied, AlreadyExists, StorageUnavailable, IndexOutOfSync)
from ..files import GenericFileService
from ...utils.prov import Agent
from ...web.rest.jsonerr import FatalError

class PipelineError(FatalError):
    """
    an exception indicating that a request cannot be handled; it carries the HTTP status that
    should be returned along with the identifier of the requested file (as ``ss:id``).
    """
    def __init__(self, code: int, reason: str, explain: str = None, id: str = None):
        super(PipelineError, self).__init__(code, reason, explain, {"ss:id": id} if id else None)
        self.id = id

class RequestContext(object):
    """
    the state of a request as it moves through the pipeline stages
    """
    def __init__(self, service: GenericFileService, id: str = None, action: str = None,
                 config: Mapping = None):
        """
        :param GenericFileService service:  the service acting on behalf of the requesting user
        :param str      id:  the identifier of the requested file, as given in the URL path
        :param str  action:  the kind of access the request requires (e.g. ``view``, ``edit``)
        :param dict config:  the web configuration (``id_namespace`` is consulted)
        """
        self.service = service
        self.id = id
        self.action = action
        self.cfg = config or {}
        self.obj = None

    @property
    def who(self) -> Agent:
        return self.service.who

def normalize_id(ctx: RequestContext) -> RequestContext:
    """
    decode the identifier taken from the URL path and, if an ``id_namespace`` is configured, make
    sure it carries the namespace prefix
    """
    id = unquote(ctx.id or '').strip()
    if not id or '/' in id:
        raise PipelineError(404, "Not Found", "Not a legal file identifier: "+repr(ctx.id))
    ns = ctx.cfg.get('id_namespace')
    if ns and not id.startswith(ns+':'):
        id = "%s:%s" % (ns, id)
    ctx.id = id
    return ctx

def authenticate(ctx: RequestContext) -> RequestContext:
    """
    require that the requesting user has been identified
    """
    if ctx.who.is_anonymous:
        raise PipelineError(401, "Unauthorized", "Authentication required", ctx.id)
    return ctx

def load_entity(ctx: RequestContext) -> RequestContext:
    """
    retrieve the requested file from the store
    """
    try:
        obj = ctx.service.store.get(ctx.id)
    except RepositoryException as ex:
        raise error_for(ex, ctx.id)
    if obj.model != GENERIC_FILE:
        raise PipelineError(404, "Not Found", "File not found: "+ctx.id, ctx.id)
    ctx.obj = obj
    return ctx

def authorize(ctx: RequestContext) -> RequestContext:
    """
    require that the requesting user is allowed to apply the context's action to the loaded file
    """
    if not ctx.service.can(ctx.obj, ctx.action):
        if ctx.who.is_anonymous:
            raise PipelineError(401, "Unauthorized", "Authentication required", ctx.id)
        raise PipelineError(403, "Forbidden", "User %s is not authorized to %s %s" %
                            (ctx.who.actor, ctx.action, ctx.id), ctx.id)
    return ctx

STAGES = {
    "normalize_id": normalize_id,
    "authenticate": authenticate,
    "load_entity": load_entity,
    "authorize": authorize
}

def run_pipeline(stages: List[Union[str, Callable]], ctx: RequestContext) -> RequestContext:
    """
    pass the request context through the given stages in order.  Stages may be given by name or
    as functions.
    :raises PipelineError:  if any stage rejects the request
    """
    for stage in stages:
        if isinstance(stage, str):
            try:
                stage = STAGES[stage]
            except KeyError:
                raise ValueError("Unknown pipeline stage: "+stage)
        ctx = stage(ctx)
    return ctx

def error_for(ex: RepositoryException, id: str = None) -> PipelineError:
    """
    convert a repository exception into the PipelineError that reports it
    """
    if isinstance(ex, ValidationError):
        return PipelineError(400, "Bad Input", str(ex), id)
    if isinstance(ex, ObjectNotFound):
        return PipelineError(404, "Not Found", str(ex), id)
    if isinstance(ex, AccessDenied):
        if ex.anonymous:
            return PipelineError(401, "Unauthorized", str(ex), id)
        return PipelineError(403, "Forbidden", str(ex), id)
    if isinstance(ex, AlreadyExists):
        return PipelineError(409, "Conflict", str(ex), id)
    if isinstance(ex, (IndexOutOfSync, StorageUnavailable)):
        return PipelineError(503, "Service Unavailable", str(ex), id)
    return PipelineError(500, "Internal Server Error", str(ex), id)
