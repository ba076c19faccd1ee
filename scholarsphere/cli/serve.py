"""
CLI command that runs the repository's web service using the standard library's reference WSGI
server.  This is intended for development and testing only.
"""
import logging
from wsgiref.simple_server import make_server

from . import CommandFailure
from ..repo import Repository
from ..repo import wsgi

default_name = "serve"
help = "run the web service with a simple development server"
description = """
  Run the repository web service on the given port using the (single-threaded) wsgiref server.
  This server is not suitable for production use.
"""

DEF_PORT = 9090

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("-p", "--port", metavar="PORT", type=int, dest="port", default=None,
                   help="the port to listen on (default: %d)" % DEF_PORT)
    p.add_argument("-H", "--host", metavar="HOST", type=str, dest="host", default="",
                   help="the host interface to bind to (default: all)")
    return None

def execute(args, config=None, log=None, server_factory=make_server):
    """
    execute this command: serve the web app until interrupted
    """
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    if config is None:
        config = {}

    port = args.port or config.get('web', {}).get('port', DEF_PORT)
    repository = Repository(config, log=log.getChild("repo"))
    repository.connect()
    try:
        app = wsgi.app(config, repository, log)
        try:
            server = server_factory(args.host, port, app)
        except OSError as ex:
            raise CommandFailure(cmd, "Unable to listen on port %s: %s" % (port, str(ex)), 5, ex)
        log.info("Serving on port %s", port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            log.info("Shutting down")
        finally:
            server.server_close()
    finally:
        repository.disconnect()
