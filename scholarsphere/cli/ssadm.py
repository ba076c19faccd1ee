"""
ssadm command-line program for executing repository administrative tasks.  Generally, this suite of
commands operates directly on the object store and search index rather than going through the REST
API.
"""
import logging, os, sys

from . import CLISuite, CommandFailure, define_prog_opts
from . import reindex, audit, serve
from ..config import ConfigurationException

description = \
"""execute repository administrative operations

The subcommands operate directly on the object store and the search index rather than going
through the REST interface.  This means that this interface generally has more privileges and
abilities than the REST interface.
"""
epilog = None
default_prog_name = "ssadm"

def create_suite(cmdname=None) -> CLISuite:
    """
    create the CLISuite with all of the ``ssadm`` subcommands loaded
    """
    if not cmdname:
        cmdname = default_prog_name
    argparser = define_prog_opts(cmdname, description, epilog)
    suite = CLISuite(cmdname, None, argparser)

    suite.load_subcommand(reindex)
    suite.load_subcommand(audit)
    suite.load_subcommand(serve)
    return suite

def main(cmdname, args):
    """
    a function that executes the ``ssadm`` command-line tool.
    """
    create_suite(cmdname).execute(args)
    return args

def run():
    prog = default_prog_name
    try:
        prog = os.path.splitext(os.path.basename(sys.argv[0]))[0]
        main(prog, sys.argv[1:])
        sys.exit(0)
    except CommandFailure as ex:
        logging.getLogger(f"{prog} {ex.cmd}").critical(str(ex))
        sys.exit(ex.stat)
    except ConfigurationException as ex:
        logging.getLogger(prog).critical("Config error: "+str(ex))
        sys.exit(6)
    except Exception as ex:
        logging.getLogger(prog).exception(ex)
        sys.exit(200)

if __name__ == "__main__":
    run()
