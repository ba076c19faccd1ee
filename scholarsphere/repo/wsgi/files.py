"""
The web service interface to generic files, mounted (by default) under ``/files``.

The following resources are supported (relative to the mount point):

``/``
    GET: list the files visible to the user; POST: upload new files (``multipart/form-data``)
``/new``
    GET: a freshly minted identifier and the listing of metadata terms (authenticated users only)
``/:id``
    GET: describe the file; PUT: update it; DELETE: delete it
``/:id/edit``
    GET: the metadata terms and current values for an edit form
``/:id/audit``
    POST: the audit log of the file along with fixity check results
``/:id/content[/:version]``
    GET: the bytes of the latest (or the given) content version
"""
import json, logging
from logging import Logger
from collections import OrderedDict
from collections.abc import Mapping
from typing import Callable, List

from werkzeug.formparser import parse_form_data

from ..base import RepositoryException, ValidationError
from ..access import VIEW, EDIT, DELETE
from ..files import GenericFileService
from ..ingest import Upload, UPLOAD_FAILURE, PARTIALLY_FAILED
from ..schema import FileUpdateRequest
from .. import Repository
from ...web.rest.base import ServiceApp, Handler, NotFoundHandler, Agent
from ...web.rest.jsonerr import HandlerWithJSON
from .pipeline import PipelineError, RequestContext, run_pipeline, error_for

DEF_DASHBOARD_URL = "/dashboard"

class FileServiceHandler(HandlerWithJSON):
    """
    base handler class for all requests on generic files.  Subclasses declare the pipeline stages
    their requests must pass through via the ``stages`` class attribute.
    """
    stages = []
    action = VIEW

    def __init__(self, service: GenericFileService, app: ServiceApp, wsgienv: dict,
                 start_resp: Callable, who: Agent, id: str = None, path: str = "",
                 config: dict = None, log: Logger = None):
        """
        Initialize this handler with the request particulars.

        :param GenericFileService service:  the service to use to access the files
        :param ServiceApp app:  the web service app receiving the request and calling this constructor
        :param dict  wsgienv:  the WSGI request context dictionary
        :param Callable start_resp:  the WSGI start-response function used to send the response
        :param Agent     who:  the authenticated user making the request.
        :param str        id:  the identifier of the file being requested (if applicable)
        :param str      path:  the remaining relative path to be handled by this handler
        """
        if config is None:
            config = app.cfg
        if not log:
            log = app.log
        super(FileServiceHandler, self).__init__(path, wsgienv, start_resp, who, config, log, app)
        self.svc = service
        self._id = id
        self.ctx = None

    def prepare(self, action: str = None, stages: List[str] = None) -> RequestContext:
        """
        run the request through this handler's pipeline stages (or the given ones)
        :raises PipelineError:  if a stage rejects the request
        """
        ctx = RequestContext(self.svc, self._id, action or self.action, self.cfg)
        self.ctx = run_pipeline(self.stages if stages is None else stages, ctx)
        self._id = self.ctx.id
        return self.ctx

    def send_pipeline_error(self, ex: PipelineError, ashead=False):
        return self.send_fatal_error(ex, ashead)

    def send_repo_error(self, ex: RepositoryException, ashead=False):
        return self.send_pipeline_error(error_for(ex, self._id), ashead)

    def send_notice(self, notice: str):
        """
        redirect the client to the dashboard, passing along a notice of the successful action
        """
        body = json.dumps(OrderedDict([("id", self._id), ("notice", notice)]), indent=2)
        return self.send_redirect(self.cfg.get('dashboard_url', DEF_DASHBOARD_URL), content=body,
                                  contenttype="application/json")

    def get_json_body(self):
        """
        read in the request body assuming that it is in JSON format
        :raises PipelineError:  if the body is missing or is not parseable JSON
        """
        bodyin = self._env.get('wsgi.input')
        if bodyin is None:
            raise PipelineError(400, "Missing input", "Missing expected input JSON data", self._id)
        try:
            length = int(self._env.get('CONTENT_LENGTH') or -1)
        except ValueError:
            length = -1
        try:
            body = bodyin.read(length) if length >= 0 else bodyin.read()
            return json.loads(body, object_pairs_hook=OrderedDict)
        except (ValueError, TypeError) as ex:
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug("Failed to parse input: %s", str(ex))
            raise PipelineError(400, "Input not parseable as JSON",
                                "Input document is not parse-able as JSON: "+str(ex), self._id)

    def get_form_data(self):
        """
        parse the ``multipart/form-data`` (or url-encoded form) request body
        :return:  a 2-tuple of parameters (name to value list) and uploaded files (name to a list
                  of (filename, bytes, mime-type) tuples)
        """
        stream, form, files = parse_form_data(self._env)
        params = OrderedDict((k, form.getlist(k)) for k in form.keys())
        uploads = OrderedDict()
        for name in files.keys():
            uploads[name] = [(f.filename, f.read(), f.mimetype or None) for f in files.getlist(name)]
        return params, uploads

    def is_json_request(self) -> bool:
        return self._env.get('CONTENT_TYPE', '').split(';')[0].strip() == "application/json"

class FileSelectionHandler(FileServiceHandler):
    """
    handle listing files and uploading new ones
    """

    def do_OPTIONS(self, path):
        return self.send_options(["GET", "POST"])

    def do_GET(self, path, ashead=False):
        return self.send_json(self.svc.list_files(), ashead=ashead)

    def do_POST(self, path):
        try:
            self.prepare(stages=["authenticate"])
        except PipelineError as ex:
            return self.send_pipeline_error(ex)

        params, files = self.get_form_data()
        batch = (params.get('batch_id') or [None])[0] or None
        md = OrderedDict()
        try:
            md = FileUpdateRequest.from_form(
                OrderedDict((k, v) for k, v in params.items() if k.startswith("generic_file[")),
                reject_unknown=False
            ).metadata
        except ValidationError as ex:
            self.log.warning("Ignoring bad metadata in upload: %s", str(ex))

        uploads = [Upload(fname, data, mime, batch, metadata=md)
                   for fname, data, mime in files.get('files[]', []) + files.get('files', [])]
        if not uploads:
            self.log.warning("Upload request contained no files")
            return self.send_upload_failure()

        results = self.svc.upload(uploads)
        stale = [r for r in results if r.state == PARTIALLY_FAILED]
        if stale:
            # stored, but not yet searchable
            return self.send_pipeline_error(error_for(stale[0].error, stale[0].object.id))
        if not all(r.succeeded for r in results):
            return self.send_upload_failure()

        ctype = "text/html" if self.prefers_html() else "application/json"
        return self.send_json([r.manifest for r in results], contenttype=ctype)

    def send_upload_failure(self):
        return self.send_json([{"error": UPLOAD_FAILURE}], "Not Modified", 304)

class NewFileHandler(FileServiceHandler):
    """
    provide a new identifier and the metadata terms for a file about to be uploaded
    """
    stages = ["authenticate"]

    def do_GET(self, path, ashead=False):
        try:
            self.prepare()
            return self.send_json(self.svc.new_file(), ashead=ashead)
        except PipelineError as ex:
            return self.send_pipeline_error(ex, ashead)
        except RepositoryException as ex:
            return self.send_repo_error(ex, ashead)

class FileHandler(FileServiceHandler):
    """
    handle access to a single file:  describe, update, or delete it
    """
    stages = ["normalize_id", "load_entity", "authorize"]

    def do_OPTIONS(self, path):
        return self.send_options(["GET", "PUT", "DELETE"])

    def do_GET(self, path, ashead=False):
        try:
            ctx = self.prepare(VIEW)
        except PipelineError as ex:
            return self.send_pipeline_error(ex, ashead)
        return self.send_json(self.svc.describe(ctx.obj), ashead=ashead)

    def do_PUT(self, path):
        try:
            self.prepare(EDIT)
            if self.is_json_request():
                req = FileUpdateRequest.from_json(self.get_json_body(), self.reject_unknown(), self._id)
            else:
                params, files = self.get_form_data()
                files = OrderedDict((k, v[0]) for k, v in files.items() if v)
                req = FileUpdateRequest.from_form(params, files, self.reject_unknown(), self._id)
            obj = self.svc.update_file(self._id, req)
        except PipelineError as ex:
            return self.send_pipeline_error(ex)
        except RepositoryException as ex:
            return self.send_repo_error(ex)

        return self.send_notice("%s was successfully updated" % (obj.label or obj.id))

    def do_DELETE(self, path):
        try:
            ctx = self.prepare(DELETE)
            label = ctx.obj.label or ctx.obj.id
            self.svc.delete_file(self._id)
        except PipelineError as ex:
            return self.send_pipeline_error(ex)
        except RepositoryException as ex:
            return self.send_repo_error(ex)

        return self.send_notice("%s has been deleted" % label)

    def reject_unknown(self) -> bool:
        return self.svc.store.reject_unknown_fields

class FileEditHandler(FileServiceHandler):
    """
    provide the data needed to present an edit form for a file
    """
    stages = ["normalize_id", "load_entity", "authorize"]
    action = EDIT

    def do_GET(self, path, ashead=False):
        try:
            self.prepare()
            return self.send_json(self.svc.edit_terms(self._id), ashead=ashead)
        except PipelineError as ex:
            return self.send_pipeline_error(ex, ashead)
        except RepositoryException as ex:
            return self.send_repo_error(ex, ashead)

class FileAuditHandler(FileServiceHandler):
    """
    report the audit log and fixity of a file
    """
    stages = ["normalize_id", "load_entity", "authorize"]

    def do_POST(self, path):
        try:
            self.prepare()
            return self.send_json(self.svc.audit(self._id))
        except PipelineError as ex:
            return self.send_pipeline_error(ex)
        except RepositoryException as ex:
            return self.send_repo_error(ex)

class FileContentHandler(FileServiceHandler):
    """
    deliver the bytes of a content version of a file
    """
    stages = ["normalize_id", "load_entity", "authorize"]

    def do_GET(self, path, ashead=False):
        try:
            self.prepare()
            data, vers = self.svc.get_content(self._id, path or None)
        except PipelineError as ex:
            return self.send_pipeline_error(ex, ashead)
        except RepositoryException as ex:
            return self.send_repo_error(ex, ashead)

        if vers.label:
            self.add_header("Content-Disposition", 'inline; filename="%s"' % vers.label)
        self.add_header("ETag", '"%s"' % vers.checksum)
        return self.send_ok(data, vers.mime_type or "application/octet-stream", ashead=ashead)


class FilesApp(ServiceApp):
    """
    a web service app providing access to generic files in the repository
    """

    def __init__(self, repository: Repository, log: Logger, config: Mapping = None):
        """
        :param Repository repository:  the repository whose files are served
        :param Logger log:  the logger to use
        :param dict config:  the web configuration; recognized parameters include ``files_url``
                             (the public base URL for files, used in upload manifests),
                             ``dashboard_url`` (the redirect target after updates and deletes),
                             and ``id_namespace``.  Whether unknown metadata fields are rejected
                             follows the store's ``reject_unknown_fields`` setting.
        """
        super(FilesApp, self).__init__("files", log, config)
        self.repo = repository

    def create_handler(self, env: dict, start_resp: Callable, path: str, who: Agent) -> Handler:
        svccfg = {}
        if self.cfg.get('files_url'):
            svccfg['files_url'] = self.cfg['files_url']
        service = self.repo.file_service(who, svccfg)

        path = path.strip('/')
        idattrpart = path.split('/', 2)
        if not idattrpart[0]:
            # path is empty: list or upload files
            return FileSelectionHandler(service, self, env, start_resp, who)
        if len(idattrpart) < 2:
            if idattrpart[0] == "new":
                return NewFileHandler(service, self, env, start_resp, who)
            return FileHandler(service, self, env, start_resp, who, idattrpart[0])

        if idattrpart[1] == "edit" and len(idattrpart) == 2:
            return FileEditHandler(service, self, env, start_resp, who, idattrpart[0])
        if idattrpart[1] == "audit" and len(idattrpart) == 2:
            return FileAuditHandler(service, self, env, start_resp, who, idattrpart[0])
        if idattrpart[1] == "content":
            vid = idattrpart[2] if len(idattrpart) > 2 else ""
            return FileContentHandler(service, self, env, start_resp, who, idattrpart[0], vid)

        return NotFoundHandler(path, env, start_resp, who, app=self)
