"""
CLI command that prints the audit log of an object along with the results of checking the fixity
of its content versions
"""
import logging, json, sys

from . import CommandFailure, get_agent
from ..repo import Repository, ObjectNotFound, RepositoryException

default_name = "audit"
help = "print the audit log and fixity check results for an object"
description = """
  Print (as JSON) the audit log of the object with the given identifier along with the results of
  recomputing the checksums of each of its content versions.  The command fails (with exit status 1)
  if any version fails its fixity check.
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("id", metavar="ID", type=str, help="the identifier of the object to audit")
    p.add_argument("-o", "--output-file", metavar="FILE", type=str, dest="outfile",
                   help="write the output to the named file instead of standard out")
    return None

def execute(args, config=None, log=None, repository=None):
    """
    execute this command: print the audit report for the requested object
    """
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    if config is None:
        config = {}

    who = get_agent(args, config)
    try:
        if not repository:
            repository = Repository(config, log=log)
        with repository:
            svcconfig = { "superusers": [who.actor] }
            report = repository.file_service(who, svcconfig).audit(args.id)
    except ObjectNotFound as ex:
        raise CommandFailure(cmd, "ID not found: "+args.id, 7, ex)
    except RepositoryException as ex:
        raise CommandFailure(cmd, "Failed to audit %s: %s" % (args.id, str(ex)), 1, ex)

    fp = None
    try:
        if args.outfile and args.outfile != '-':
            fp = open(args.outfile, 'w')
            op = fp
        else:
            op = sys.stdout
        json.dump(report, op, indent=4, separators=(',', ': '))
        op.write("\n")
    except OSError as ex:
        raise CommandFailure(cmd, "Failed to write data to %s: %s" %
                             ((fp and args.outfile) or "standard out", str(ex)), 4)
    finally:
        if fp: fp.close()

    if not report['verified']:
        bad = [f['version'] for f in report['fixity'] if not f['verified']]
        raise CommandFailure(cmd, "%s: fixity check failed for %s" % (args.id, ", ".join(bad)), 1)
    return report
