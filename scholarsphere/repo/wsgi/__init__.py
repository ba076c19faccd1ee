"""
The WSGI web service interface to the repository.

The web app is assembled from a configuration via :py:func:`app`; the ``web`` section of the
configuration controls it:

``base_ep``
    the base URL path that all services are mounted under (default: none)
``files_path``
    the path (relative to ``base_ep``) where the generic files service is mounted (default:
    ``files``)
``files_url``
    the public URL for the files service used in upload manifests; it defaults to the mount point
``dashboard_url``
    the URL clients are redirected to after an update or delete (default: ``/dashboard``)
``include_headers``
    HTTP headers to include in every response
``authentication``
    the client authentication configuration (see
    :py:class:`~scholarsphere.web.rest.base.AuthenticatedWSGIApp`)
"""
from logging import Logger
from collections.abc import Mapping
from copy import deepcopy

from .files import FilesApp
from .pipeline import PipelineError, RequestContext, run_pipeline, STAGES
from .. import Repository, sys
from ...web.rest.base import WSGIAppSuite

DEF_FILES_PATH = "files"

def app(config: Mapping, repository: Repository = None, log: Logger = None) -> WSGIAppSuite:
    """
    create the WSGI application serving the repository
    :param dict config:  the full application configuration
    :param Repository repository:  the repository to serve; if not provided, one is created (and
                         connected) from the configuration
    :param Logger log:   the logger to use; if not provided, the system logger is used
    """
    if not log:
        log = sys.getSysLogger().getChild("web")
    if not repository:
        repository = Repository(config, log=log.getChild("repo"))
        repository.connect()

    webcfg = deepcopy(config.get('web', {}))
    webcfg.setdefault('name', 'scholarsphere')
    files_path = webcfg.get('files_path', DEF_FILES_PATH).strip('/')
    if not webcfg.get('files_url'):
        base = webcfg.get('base_ep', '').strip('/')
        webcfg['files_url'] = "/" + "/".join(p for p in [base, files_path] if p)

    svcapps = { files_path: FilesApp(repository, log.getChild("files"), webcfg) }
    return WSGIAppSuite(webcfg, svcapps, log)
