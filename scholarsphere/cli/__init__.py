"""
Support for building command-line programs out of subcommands.

A program is a :py:class:`CLISuite` loaded with subcommands.  A subcommand is a module (or any
object) providing:

``default_name``
    the name the subcommand is invoked by
``help``
    a one-line summary
``description``
    a longer description for the subcommand's ``-h`` output (optional)
``load_into(subparser, dests, cmdname)``
    defines the subcommand's arguments on the given subparser
``execute(args, config, log)``
    runs the subcommand, raising :py:class:`CommandFailure` when it cannot complete
"""
import os, sys, logging
from copy import deepcopy
from getpass import getuser
from argparse import ArgumentParser, HelpFormatter, Namespace
from collections.abc import Mapping

from .. import StateException
from ..config import ConfigurationException
from .. import config as cfgmod
from ..utils.prov import Agent

EXPLAIN = cfgmod.NORMAL

def explain(log, message, *params):
    """
    log a message at the NORMAL level:  recorded in the log file but printed to the terminal only
    with ``--verbose``.
    """
    log.log(EXPLAIN, message, *params)

class ParagraphHelpFormatter(HelpFormatter):
    """
    a help formatter that re-wraps description text one paragraph at a time
    """
    def _fill_text(self, text, width, indent):
        fill = super(ParagraphHelpFormatter, self)._fill_text
        return "\n\n".join(fill(p, width, indent) for p in text.split("\n\n"))

_PROG_OPTS = [
    (("-w", "--workdir"), dict(type=str, dest='workdir', metavar='DIR', default="",
                               help="the directory to read and write files in (including the log) "+
                                    "by default; default='.'")),
    (("-c", "--config"), dict(type=str, dest='conf', metavar='FILE',
                              help="read the configuration from FILE (overrides the "+
                                   cfgmod.CONFIG_ENV_VAR+" environment variable)")),
    (("-l", "--logfile"), dict(type=str, dest='logfile', metavar='FILE',
                               help="write log messages to FILE instead of the configured log file")),
    (("-q", "--quiet"), dict(action="store_true", dest='quiet',
                             help="do not print messages to standard error")),
    (("-D", "--debug"), dict(action="store_true", dest='debug',
                             help="include DEBUG messages in the log file")),
    (("-v", "--verbose"), dict(action="store_true", dest='verbose',
                               help="also print NORMAL (and, with -D, DEBUG) messages to the terminal")),
    (("-A", "--actor-id"), dict(type=str, dest="actor", metavar='USERID',
                                help="the identifier of the person running this command, recorded "+
                                     "as the actor in audit logs"))
]

def define_prog_opts(progname, description=None, epilog=None, parser=None) -> ArgumentParser:
    """
    define the options common to all subcommands of a program

    :param str progname:     the program's name as shown in help
    :param str description:  the summary shown before the options (optional)
    :param str epilog:       text shown after the options (optional)
    :param ArgumentParser parser:  the parser to add the options to; one is created if not given
    """
    if not parser:
        parser = ArgumentParser(progname, None, description, epilog,
                                formatter_class=ParagraphHelpFormatter)
    parser.epilog = "\n\n".join(t for t in ["Run '%(prog)s CMD -h' for help on CMD.", parser.epilog]
                                if t)
    for flags, kw in _PROG_OPTS:
        parser.add_argument(*flags, **kw)
    return parser

def get_agent(args, config: Mapping, vehicle: str = "ssadm") -> Agent:
    """
    return the Agent that a command runs as.  The actor is the ``--actor-id`` value or, failing
    that, the login name; it is a functional identity (AUTO) if it is listed in the ``auto_users``
    configuration parameter.  Commands run with administrative rights.
    """
    who = getattr(args, 'actor', None) or getuser()
    utype = Agent.AUTO if who in config.get("auto_users", []) else Agent.USER
    return Agent(vehicle, utype, who, Agent.ADMIN)

class CommandFailure(Exception):
    """
    a command could not complete; the program should exit with the status given by :py:attr:`stat`.

    Exit status conventions:

    ====  ===============================================================
     1    general processing failure
     2    command-line options missing or misused
     3    input data could not be read
     4    output data could not be written
     5    a remote service (store, index) failed
     6    configuration error
     7    the requested object does not exist
    10    unrecognized subcommand
    ====  ===============================================================
    """

    def __init__(self, cmdname, message, exstat=1, cause=None):
        """
        :param str cmdname:  the name of the failed command
        :param str message:  what went wrong; if empty, the cause's message is used
        :param int  exstat:  the exit status to use
        :param Exception cause:  the exception behind the failure, if any
        """
        if not message:
            message = str(cause) if cause else "Unknown command failure"
        super(CommandFailure, self).__init__(message)
        self.stat = exstat
        self.cmd = cmdname
        self.cause = cause

class CLISuite(object):
    """
    a command-line program made up of subcommands (loaded via :py:meth:`load_subcommand`)
    """

    def __init__(self, progname, defconffile=None, parser=None):
        """
        :param str   progname:  the program's name; it also names the default log file
        :param str defconffile:  a configuration file to load when none is otherwise specified
        :param ArgumentParser parser:  a parser with the program options already defined
        """
        self.suitename = progname
        self._defconffile = defconffile
        self.parser = parser or define_prog_opts(progname)
        self._dests = set(a.dest for a in self.parser._actions)
        self._subparsers = self.parser.add_subparsers(title="commands", dest="cmd")
        self._cmds = {}

    def parse_args(self, args) -> Namespace:
        return self.parser.parse_args(args)

    def load_subcommand(self, cmdmod, cmdname=None):
        """
        add a subcommand to this program
        :param module|object cmdmod:  the subcommand
        :param str cmdname:  the name to invoke it by; its ``default_name`` if not given
        """
        if not hasattr(cmdmod, "load_into"):
            raise StateException("command module/object has no load_into() function: " + repr(cmdmod))
        cmdname = cmdname or cmdmod.default_name

        sub = self._subparsers.add_parser(cmdname, help=cmdmod.help,
                                          description=getattr(cmdmod, 'description', None),
                                          formatter_class=ParagraphHelpFormatter)
        self._cmds[cmdname] = cmdmod.load_into(sub, self._dests, cmdname) or cmdmod
        self._dests.update(a.dest for a in sub._actions)

    def extract_config_for_cmd(self, config, cmdname, cmd=None):
        """
        return the configuration for a command:  the top-level configuration with the command's
        entry from the ``cmd`` parameter (keyed by command name) merged over it.
        """
        if 'cmd' not in config:
            return config

        percmd = config['cmd']
        out = deepcopy(config)
        del out['cmd']
        if cmdname not in percmd and hasattr(cmd, 'default_name'):
            cmdname = cmd.default_name
        if cmdname in percmd:
            out = cfgmod.merge_config(percmd[cmdname], out)
        return out

    def configure_log(self, args, config):
        """
        set up logging:  messages go to the log file (``<progname>.log`` in the working directory
        unless configured or given with ``-l``) and, unless ``-q`` was given, to standard error.
        """
        workdir = config.get('working_dir', os.getcwd())
        config.setdefault('logdir', workdir)
        if args.logfile:
            config['logfile'] = os.path.join(workdir, args.logfile)
        else:
            config.setdefault('logfile', self.suitename + ".log")
        cfgmod.configure_log(level=logging.DEBUG if args.debug else cfgmod.NORMAL, config=config)

        if not args.quiet:
            handler = logging.StreamHandler(sys.stderr)
            if args.verbose:
                handler.setLevel(logging.DEBUG if args.debug else cfgmod.NORMAL)
                handler.setFormatter(logging.Formatter("%(name)s %(levelname)s: %(message)s"))
            else:
                handler.setLevel(logging.INFO)
                handler.setFormatter(logging.Formatter(self.suitename+" %(levelname)s: %(message)s"))
            logging.getLogger().addHandler(handler)

        log = logging.getLogger("cli."+self.suitename)
        log.setLevel(cfgmod.NORMAL)
        if args.verbose:
            log.info("Writing log messages to %s", cfgmod.global_logfile)
        return log

    def load_config(self, args):
        """
        return the configuration named by ``--config``, or else by the SCHOLARSPHERE_CONFIG
        environment variable, or else the default configuration file (if it exists).  An empty
        configuration is returned if none of these is available.
        """
        if args.conf:
            return cfgmod.load_from_file(args.conf)
        if os.environ.get(cfgmod.CONFIG_ENV_VAR):
            return cfgmod.resolve_configuration()
        if self._defconffile and os.path.isfile(self._defconffile):
            return cfgmod.load_from_file(self._defconffile)
        return {}

    def _set_workdir(self, args, config):
        if args.workdir:
            workdir = os.path.abspath(args.workdir)
            if not os.path.isdir(workdir):
                raise CommandFailure(args.cmd, "Working dir is not an existing directory: "+workdir, 2)
            args.workdir = workdir
        else:
            workdir = os.path.abspath(config.get('working_dir') or os.getcwd())
        config['working_dir'] = workdir

    def execute(self, args, config=None):
        """
        run the subcommand named in the arguments
        :param list|Namespace args:  the program's arguments, either as a list of strings or
                                     already parsed
        :param dict config:  the configuration to use; if None, it is loaded via
                             :py:meth:`load_config`
        :raises CommandFailure:  if the command fails.  A ConfigurationException raised by the
                             command is converted to a CommandFailure with exit status 6.
        """
        argv = args if isinstance(args, list) else None
        if argv is not None:
            args = self.parse_args(argv)
        if not args.cmd:
            raise CommandFailure(None, "No command given", 2)
        cmd = self._cmds.get(args.cmd)
        if cmd is None:
            raise CommandFailure(args.cmd, "Unrecognized command: "+args.cmd, 10)

        if config is None:
            config = self.load_config(args)
        config = self.extract_config_for_cmd(config, args.cmd, cmd)
        self._set_workdir(args, config)

        log = self.configure_log(args, config)
        if argv:
            explain(log, "Executing: %s %s", self.suitename, " ".join(argv))

        try:
            return cmd.execute(args, config, log.getChild(args.cmd))
        except CommandFailure as ex:
            ex.cmd = args.cmd + " " + ex.cmd if ex.cmd and ex.cmd != args.cmd else args.cmd
            raise
        except ConfigurationException as ex:
            raise CommandFailure(args.cmd, "Configuration error: "+str(ex), 6, ex)
