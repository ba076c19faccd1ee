"""
CLI command that rebuilds search documents from the object store.  This is the way to repair the
search index after an object's document failed to be published (see
:py:class:`~scholarsphere.repo.base.IndexOutOfSync`).
"""
import logging

from . import CommandFailure
from ..repo import Repository, RepositoryException, IndexOutOfSync
from ..repo.index import IndexUnavailable

default_name = "reindex"
help = "rebuild the search documents for objects in the repository"
description = """
  Rebuild the search documents for the objects with the given identifiers, or for all objects if
  no identifiers are given.  Documents of requested objects that no longer exist in the store are
  removed from the index.
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("ids", metavar="ID", type=str, nargs="*",
                   help="the identifier of an object to reindex; if none are given, all are reindexed")
    return None

def execute(args, config=None, log=None, repository=None):
    """
    execute this command: publish fresh search documents for the requested objects
    """
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    if config is None:
        config = {}

    try:
        if not repository:
            repository = Repository(config, log=log)
        with repository:
            done = repository.reindex(args.ids or None)
    except IndexOutOfSync as ex:
        raise CommandFailure(cmd, "Index remains out of sync: "+str(ex), 5, ex)
    except (IndexUnavailable, RepositoryException) as ex:
        raise CommandFailure(cmd, "Failed to reindex: "+str(ex), 1, ex)

    log.info("Reindexed %d object%s", len(done), "" if len(done) == 1 else "s")
    return done
