"""
a log level for backend chatter below DEBUG
"""
import logging

utilslog = logging.getLogger("ScholarSphere.utils")

BLAB = 9
logging.addLevelName(BLAB, "BLAB")

def blab(log: logging.Logger, msg: str, *args, **kwargs):
    """
    record a message at the BLAB level.  Use this for per-record and per-request details from the
    storage and index backends that would swamp a DEBUG log.
    """
    log.log(BLAB, msg, *args, **kwargs)
