#!/usr/bin/env python3
"""
ssadm:  execute repository administrative operations.

Run ``ssadm.py -h`` for a listing of the available subcommands.  The configuration is read from the
file given with the ``-c`` option or, if that is not given, from the location in the
SCHOLARSPHERE_CONFIG environment variable.
"""
from scholarsphere.cli.ssadm import run

if __name__ == "__main__":
    run()
