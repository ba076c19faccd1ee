"""
JSON error bodies for HTTP error responses.

The HTTP status tells a client that a request failed; the body says why in a form a program can
read.  Every error body is a JSON object with at least these properties:

``http:status``
     the HTTP status number, as sent in the status line
``http:reason``
     the short reason phrase, as sent in the status line
``ss:message``
     a fuller explanation of the failure

Handlers may add more properties; the file service adds ``ss:id``, the identifier of the file the
request was about.
"""
import json
from collections import OrderedDict
from typing import Mapping

from .base import Handler

ERROR_PROPS = ("http:status", "http:reason", "ss:message")

def is_error_msg(msgobj: Mapping) -> bool:
    """
    return True if the given object looks like a JSON error body
    """
    return isinstance(msgobj, Mapping) and ERROR_PROPS[0] in msgobj and ERROR_PROPS[2] in msgobj

def make_message(code: int, reason: str, message: str = None, extra: Mapping = None):
    """
    assemble an error body.  ``message`` defaults to ``reason``; properties in ``extra`` follow
    the required ones.
    """
    out = OrderedDict(zip(ERROR_PROPS, (code, reason, message or reason)))
    out.update(extra or {})
    return out

class FatalError(Exception):
    """
    an error that should end the request, carrying what is needed to build its error response
    """
    def __init__(self, code: int, reason: str, explain: str = None, extra: Mapping = None):
        """
        :param int    code:  the HTTP status to respond with
        :param str  reason:  the reason phrase for the status line
        :param str explain:  the explanation given as ``ss:message`` in the body
        :param dict  extra:  additional properties for the body
        """
        explain = explain or reason or ''
        super(FatalError, self).__init__(explain)
        self.code = code
        self.reason = reason
        self.explain = explain
        self.data = extra

    def data_update(self, props: Mapping):
        """
        add properties to include in the error body
        """
        if self.data is None:
            self.data = OrderedDict()
        self.data.update(props)

    def to_dict(self):
        return make_message(self.code, self.reason, self.explain, self.data)

    def to_json(self, indent=None):
        return json.dumps(self.to_dict(), indent=indent)

class ErrorHandling:
    """
    a mixin for :py:class:`~scholarsphere.web.rest.base.Handler` classes that respond to failures
    with JSON error bodies.  Server-side failures (status 500 and above) are also logged.
    """

    def send_error_obj(self, code: int, reason: str, explain: str = None, extra: Mapping = None,
                       ashead=False, contenttype="application/json"):
        """
        respond with an error status and a JSON error body
        """
        return self.send_fatal_error(FatalError(code, reason, explain, extra), ashead, contenttype)

    def send_fatal_error(self, fatalex: FatalError, ashead=False, contenttype="application/json"):
        """
        respond with the status and JSON error body described by a FatalError
        """
        if fatalex.code >= 500 and getattr(self, 'log', None):
            self.log.error("%s: %s", (fatalex.data or {}).get("ss:id") or self.path, fatalex.explain)
        return self.send_error(fatalex.code, fatalex.reason, fatalex.to_json(), contenttype, ashead)

class HandlerWithJSON(Handler, ErrorHandling):
    """
    a Handler that reports errors with JSON bodies
    """
    pass
