"""
The foundation classes of the REST web layer:  request handlers, the service apps that create
them, and the WSGI applications that authenticate clients and route requests to service apps.
"""
import re, json
from abc import ABCMeta, abstractmethod
from logging import Logger
from typing import Mapping, List, Callable, Union

import jwt

from wsgiref.headers import Headers

from ..utils import order_accepts, prefers
from ...config import ConfigurationException
from ...utils.prov import Agent

__all__ = ["Handler", "NotFoundHandler", "ServiceApp", "Unauthenticated", "WSGIServiceApp",
           "AuthenticatedWSGIApp", "WSGIAppSuite", "Agent",
           "authenticate_via_authkey", "authenticate_via_jwt", "make_agent_from_claimset" ]

UNKNOWN_CLIENT = "(unknown)"

def _as_body(content, contenttype: str, encoding: str):
    # normalize response content to a list of bytes and pick a default type
    if not content:
        return [], contenttype
    if not isinstance(content, list):
        content = [content]
    if any(not isinstance(c, (str, bytes)) for c in content):
        raise TypeError("response content must be str or bytes (or a list of them)")
    if not contenttype:
        contenttype = "text/plain" if isinstance(content[0], str) else "application/octet-stream"
    return [c.encode(encoding) if isinstance(c, str) else c for c in content], contenttype

class Handler(object):
    """
    the handler of a single request on a single resource.  The request is answered via
    :py:meth:`handle` which calls the ``do_`` function named for the HTTP method (e.g. ``do_GET``); subclasses
    supply these functions for the methods their resource supports.  A ``do_`` function takes the
    resource path as its argument (``do_GET`` also takes ``ashead``) and returns the response body
    (usually as returned by one of the ``send_*`` functions).

    The ``who`` attribute holds the :py:class:`~scholarsphere.utils.prov.Agent` making the request.
    """

    def __init__(self, path: str, wsgienv: dict, start_resp: Callable, who=None,
                 config: dict=None, log: Logger=None, app=None):
        self._path = path
        self._env = wsgienv
        self._start = start_resp
        self._app = app
        self.cfg = {} if config is None else config
        self.log = log
        self._status = (0, "unknown status")
        self._meth = wsgienv.get('REQUEST_METHOD', 'GET')

        extra = getattr(app, 'include_headers', None) if app else None
        self._hdr = Headers(list(extra.items()) if extra else [])
        self.who = who or self._default_agent()

    @property
    def app(self):
        """
        the ServiceApp that created this handler, or None
        """
        return self._app

    @property
    def path(self):
        return self._path

    def _default_agent(self):
        vehicle = self._app.name if self._app else "scholarsphere"
        return Agent(vehicle, Agent.UNKN, Agent.ANONYMOUS, Agent.PUBLIC)

    def add_header(self, name: str, value: str):
        """
        add a header to be sent with the response.  Header names and values must be Latin-1
        encodable (PEP 3333); a UnicodeEncodeError is raised otherwise.
        """
        name.encode("ISO-8859-1")
        value.encode("ISO-8859-1")
        self._hdr.add_header(name, value)

    def respond(self, code: int, reason: str, content=None, contenttype: str=None,
                ashead: bool=None, encoding: str='utf-8'):
        """
        send the status line and headers and return the body to hand back to the WSGI server.

        :param int      code:  the HTTP status code
        :param str    reason:  the reason phrase for the status line
        :param content:        the body as a str, bytes, or a list of either
        :param str contenttype:  the body's MIME type; when not given, it is guessed from the
                               type of the content
        :param bool   ashead:  if True, send the headers describing the content but withhold the
                               content itself.  If None, this is True when the request method was
                               HEAD.
        :param str  encoding:  the encoding for turning str content into bytes
        """
        if ashead is None:
            ashead = self._meth.upper() == "HEAD"
        body, contenttype = _as_body(content, contenttype, encoding)

        if contenttype:
            self.add_header("Content-Type", contenttype)
        if body:
            self.add_header("Content-Length", str(sum(len(b) for b in body)))

        self._status = (code, reason)
        self._start("%d %s" % self._status, self._hdr.items(), None)
        return [] if ashead else body

    def send_error(self, code, message, content=None, contenttype=None, ashead=None, encoding='utf-8'):
        """
        respond with an error status.  ``message`` becomes the reason phrase of the status line.
        """
        return self.respond(code, message, content, contenttype, ashead, encoding)

    def send_ok(self, content=None, contenttype=None, message="OK", code=200, ashead=None,
                encoding='utf-8'):
        """
        respond with a success status (200 by default)
        """
        return self.respond(code, message, content, contenttype, ashead, encoding)

    def send_json(self, data, message="OK", code=200, ashead=False, encoding='utf-8',
                  contenttype="application/json"):
        """
        respond with the given data serialized as JSON
        """
        return self.respond(code, message, json.dumps(data, indent=2), contenttype, ashead, encoding)

    def send_redirect(self, location: str, message="See Other", code=303, content=None,
                      contenttype=None):
        """
        send the client to another URL (with a 303 response unless ``code`` says otherwise)
        """
        self.add_header("Location", location)
        return self.respond(code, message, content, contenttype)

    def send_options(self, allowed_methods: List[str]=None, origin: str=None, extra=None,
                     forcors: bool=True):
        """
        answer an OPTIONS request, typically a CORS preflight check
        :param List[str] allowed_methods:  the methods supported by the resource; OPTIONS is
                                   always added
        :param str          origin:  the origin to allow
        :param extra:       additional headers, as a dict or a list of name-value pairs
        """
        meths = [m for m in (allowed_methods or []) if m != 'OPTIONS'] + ['OPTIONS']
        if forcors:
            self.add_header('Access-Control-Allow-Methods', ", ".join(meths))
            if origin:
                self.add_header('Access-Control-Allow-Origin', origin)
            self.add_header('Access-Control-Allow-Headers', "Content-Type")
        if isinstance(extra, Mapping):
            extra = extra.items()
        for name, val in (extra or []):
            self.add_header(name, val)
        return self.send_ok(message="No Content")

    def handle(self):
        """
        respond to the request by calling the ``do_`` function for the requested method.  A HEAD
        request on a resource with no ``do_HEAD`` is served by ``do_GET`` with ``ashead=True``.  An
        ``X-HTTP-Method-Override`` header replaces the request's method.  Unsupported methods get a
        405 response; an unexpected exception gets 500.
        """
        meth = self._env.get('HTTP_X_HTTP_METHOD_OVERRIDE') or self._meth
        func = getattr(self, 'do_'+meth, None)
        try:
            if func:
                return func(self._path)
            if meth == "HEAD" and hasattr(self, "do_GET"):
                return self.do_GET(self._path, ashead=True)
            return self.send_error(405, meth + " not supported on this resource")
        except Exception as ex:
            if self.log:
                self.log.exception("Unexpected failure handling %s %s: %s", meth, self._path, str(ex))
            return self.send_error(500, "Server failure")

    def get_accepts(self) -> List[str]:
        """
        return the media types from the Accept header, most preferred first
        """
        return order_accepts(self._env.get('HTTP_ACCEPT') or [])

    def prefers_html(self) -> bool:
        """
        return True if the client ranks HTML ahead of JSON.  Browsers uploading files via a hidden
        iframe do so.
        """
        return prefers(self.get_accepts(), "text/html", "application/json")

class NotFoundHandler(Handler):
    """
    a Handler for unrecognized resource paths:  every GET (or HEAD) gets 404.
    """
    def do_GET(self, path, ashead=False):
        return self.send_error(404, "Not Found", ashead=ashead)

    def do_OPTIONS(self, path):
        return self.send_options(["GET"])


def _load_include_headers(hdrs) -> Headers:
    if not hdrs:
        return Headers([])
    if isinstance(hdrs, Mapping):
        hdrs = list(hdrs.items())
    if not isinstance(hdrs, list):
        raise ConfigurationException("include_headers: must be either a dict or a list of "+
                                     "name-value pairs")
    try:
        return Headers([(str(n), str(v)) for n, v in hdrs])
    except (TypeError, ValueError):
        raise ConfigurationException("include_headers: must be either a dict or a list of "+
                                     "name-value pairs")

class ServiceApp(metaclass=ABCMeta):
    """
    the web interface to one service, handling a resource path and everything below it within a
    larger WSGI application.  Subclasses implement :py:meth:`create_handler` to pick the
    :py:class:`Handler` for a requested path.

    The ``include_headers`` configuration parameter (a dict or a list of name-value pairs) names
    headers added to every response.
    """

    def __init__(self, appname: str, log: Logger, config: Mapping=None):
        self._name = appname
        self.log = log
        self.cfg = {} if config is None else config
        self.include_headers = _load_include_headers(self.cfg.get("include_headers"))

    @property
    def name(self):
        """
        the name of this service; it identifies the service to clients and in Agent records
        """
        return self._name

    @abstractmethod
    def create_handler(self, env: dict, start_resp: Callable, path: str, who: Agent) -> Handler:
        """
        return the handler for a request on the given path (relative to this app's base)
        """
        raise NotImplementedError()

    def handle_path_request(self, env: dict, start_resp: Callable, path: str=None, who: Agent=None):
        """
        respond to a request on a path relative to this app's base.  If ``path`` is None,
        ``PATH_INFO`` is used.
        """
        if path is None:
            path = env.get('PATH_INFO', '')
        return self.create_handler(env, start_resp, path, who).handle()

    def __call__(self, env, start_resp):
        return self.handle_path_request(env, start_resp)

class Unauthenticated(Exception):
    """
    the client failed to authenticate:  credentials were required but missing, or they were
    not valid.
    """
    pass

class WSGIApp(metaclass=ABCMeta):
    """
    the base of the WSGI applications that front one or more ServiceApps.  It authenticates the
    client and strips the base endpoint from the requested path before dispatching.

    Configuration parameters:

    ``base_ep``
        the URL path that all served resources live under (e.g. ``/ss``).  Requests outside it
        get 404; requests on its parents get 403.
    ``name``
        a short name for the app, used as the vehicle of authenticated agents
    """

    def __init__(self, config: Mapping, log: Logger, base_ep: str = None, name: str = None):
        self.log = log
        self.cfg = config
        self.name = name or self.cfg.get("name", "")
        base_ep = (base_ep or self.cfg.get("base_ep", "")).strip('/')
        self.base_ep = '/%s/' % base_ep if base_ep else None

    def authenticate(self, env) -> Union[Agent,None]:
        """
        return the identity of the client.  This implementation supports no authentication and
        returns None.
        :raises Unauthenticated:  if the client's credentials are rejected
        """
        return None

    def _relative_path(self, path: str):
        # returns (relpath, None) or (None, error status)
        if not self.base_ep:
            return path, None
        if path.startswith(self.base_ep):
            return path[len(self.base_ep):], None
        if self.base_ep == path+'/':
            return '', None
        if self.base_ep.startswith(path.rstrip('/')+'/'):
            return None, (403, "Forbidden")
        return None, (404, "Not Found")

    def handle_request(self, env: Mapping, start_resp: Callable):
        path = re.sub(r'/+', '/', env.get('PATH_INFO', '/'))

        try:
            who = self.authenticate(env)
        except Unauthenticated as ex:
            self.log.debug("Authentication failure: %s", str(ex))
            return Handler(path, env, start_resp).send_error(401, "Authentication Failure")
        except Exception as ex:
            self.log.exception("Unexpected failure while authenticating: %s", str(ex))
            return Handler(path, env, start_resp).send_error(500, "Internal Server Error")

        relpath, err = self._relative_path(path)
        if err:
            return Handler(path, env, start_resp).send_error(*err)
        return self.handle_path_request(relpath.strip('/'), env, start_resp, who)

    @abstractmethod
    def handle_path_request(self, path: str, env: Mapping, start_resp: Callable, who = None):
        """
        dispatch a request to a handler
        :param str path:  the requested path relative to the base endpoint
        :param dict env:  the WSGI request environment
        :param func start_resp:  the WSGI start-response function
        :param      who:  the Agent representing the client
        """
        raise NotImplementedError()

    def __call__(self, env, start_resp):
        return self.handle_request(env, start_resp)

class AuthenticatedWSGIApp(WSGIApp):
    """
    a WSGIApp that identifies its clients as :py:class:`~scholarsphere.utils.prov.Agent` instances.

    Authentication is controlled by the ``authentication`` configuration object; its ``type``
    parameter selects the mechanism:

    ``none`` (default)
        every client is anonymous
    ``authkey``
        clients present a shared key as a Bearer token (see :py:func:`authenticate_via_authkey`)
    ``jwt``
        clients present a signed JSON Web Token as a Bearer token (see
        :py:func:`authenticate_via_jwt`)

    Other parameters:

    ``allowed_clients``
        the client applications permitted to use the service; when set, the ``SS-Client-ID``
        header must name one of them.
    ``client_agents``
        a map of client IDs to the agents they act for (used when the request carries no
        ``SS-Client-Agents`` header)
    ``raise_on_invalid``
        if True, bad credentials get a 401 response instead of an invalid anonymous Agent
    ``raise_on_anonymous``
        if True, missing credentials get a 401 response instead of an anonymous Agent
    """

    def authenticate(self, env) -> Agent:
        authcfg = self.cfg.get('authentication', {})

        client_id = env.get('HTTP_SS_CLIENT_ID', UNKNOWN_CLIENT)
        agents = env.get('HTTP_SS_CLIENT_AGENTS', '').split() or \
                 authcfg.get('client_agents', {}).get(client_id, [client_id])

        allowed = authcfg.get('allowed_clients')
        if allowed is not None and client_id not in allowed:
            self.log.warning("Client %s is not among the allowed clients", client_id)
            return _reject_invalid(client_id, authcfg, agents, "Unrecognized client ID: "+client_id)

        return self.authenticate_user(env, agents, client_id)

    def authenticate_user(self, env: Mapping, agents: List[str]=None, client_id: str=None) -> Agent:
        """
        identify the user via the configured ``authentication.type``
        :raises Unauthenticated:  if the credentials are rejected
        :raises ConfigurationException:  if the type is not supported
        """
        authcfg = self.cfg.get('authentication', {})
        vehicle = self.name or client_id or UNKNOWN_CLIENT
        authtype = authcfg.get('type', 'none')

        if authtype == 'authkey':
            return authenticate_via_authkey(vehicle, env, authcfg, self.log, agents, client_id)
        if authtype == 'jwt':
            return authenticate_via_jwt(vehicle, env, authcfg, self.log, agents, client_id)
        if authtype != 'none':
            raise ConfigurationException("authentication.type: unsupported value: "+str(authtype))
        return _anonymous(vehicle, authcfg, agents, "Unauthenticated by default")


def _bearer_token(env: Mapping):
    auth = env.get('HTTP_AUTHORIZATION', '').split()
    if len(auth) < 2 or auth[0] != "Bearer":
        return None
    return auth[1]

def _anonymous(vehicle: str, authcfg: Mapping, agents, why: str) -> Agent:
    if authcfg.get('raise_on_anonymous'):
        raise Unauthenticated(why)
    return Agent(vehicle, Agent.UNKN, Agent.ANONYMOUS, Agent.PUBLIC, agents)

def _reject_invalid(vehicle: str, authcfg: Mapping, agents, why: str) -> Agent:
    if authcfg.get('raise_on_invalid'):
        raise Unauthenticated(why)
    return Agent(vehicle, Agent.UNKN, Agent.ANONYMOUS, Agent.INVALID, agents, invalid_reason=why)

def authenticate_via_authkey(svcname: str, env: Mapping, authcfg: Mapping, log: Logger,
                             agents: List[str]=None, client_id: str=None) -> Agent:
    """
    identify the user by an opaque key presented as a Bearer token.  The recognized keys are
    listed in the ``authorized`` configuration parameter; each entry has:

    ``auth_key``
       the key (required)
    ``user``
       the identifier of the user the key belongs to
    ``groups``
       the groups the user is a member of (optional)
    ``client``
       a name for the client; it becomes the Agent's ``agent_class`` (optional)

    A request with no key yields an anonymous Agent; an unrecognized key yields an anonymous
    Agent of the ``invalid`` class.  The ``raise_on_anonymous`` and ``raise_on_invalid``
    parameters turn these into :py:class:`Unauthenticated` exceptions.

    :param str   svcname:  the vehicle to assign to the Agent
    :param dict      env:  the WSGI request environment
    :param dict  authcfg:  the authentication configuration
    :param Logger    log:  the logger for recording rejections
    :param [str]  agents:  the agents the client acts for
    :param str client_id:  the client application's identifier
    """
    client_id = client_id or UNKNOWN_CLIENT
    svcname = svcname or client_id

    key = _bearer_token(env)
    if not key:
        log.debug("Client %s did not provide a Bearer authentication token", client_id)
        return _anonymous(svcname, authcfg, agents, "No auth token provided")

    match = [c for c in authcfg.get('authorized', []) if c.get("auth_key") == key]
    if match:
        return Agent(svcname, Agent.USER, match[0].get('user', 'authorized'),
                     match[0].get('client'), agents, match[0].get('groups'))

    log.warning("Unrecognized token from client %s", client_id)
    return _reject_invalid(svcname, authcfg, agents, "Unrecognized auth token")

def authenticate_via_jwt(svcname: str, env: Mapping, jwtcfg: Mapping, log: Logger,
                         agents: List[str], client_id: str=None,
                         claim_to_agent_func: Callable=None) -> Agent:
    """
    identify the user from a JSON Web Token presented as a Bearer token.  Configuration
    parameters:

    ``key``
        the secret shared with the token issuer for verifying signatures (required)
    ``algorithm``
        the signing algorithm (default: ``HS256``)
    ``require_expiration``
        if True (default), tokens without an ``exp`` claim are rejected as invalid

    ``raise_on_anonymous`` and ``raise_on_invalid`` work as in :py:func:`authenticate_via_authkey`.

    :param claim_to_agent_func:  the function that turns the decoded claim set into an Agent;
                        :py:func:`make_agent_from_claimset` by default.
    """
    client_id = client_id or UNKNOWN_CLIENT
    svcname = svcname or client_id

    token = _bearer_token(env)
    if not token:
        log.debug("Client %s did not provide an authentication token", client_id)
        return _anonymous(svcname, jwtcfg, agents, "JWT token not provided")

    try:
        # this also rejects expired tokens
        claims = jwt.decode(token, jwtcfg.get("key", ""),
                            algorithms=[jwtcfg.get("algorithm", "HS256")])
    except jwt.InvalidTokenError as ex:
        log.warning("Unable to decode token from client %s: %s", client_id, str(ex))
        return _reject_invalid(svcname, jwtcfg, agents, "Invalid token can not be decoded")

    if jwtcfg.get('require_expiration', True) and not claims.get('exp'):
        log.warning("Rejecting non-expiring token for user %s", claims.get('sub', "(unknown)"))
        return _reject_invalid(svcname, jwtcfg, agents, "non-expiring token rejected")

    return (claim_to_agent_func or make_agent_from_claimset)(svcname, claims, log, agents)

_CLAIMS_NOT_KEPT = ("sub", "groups", "exp", "iat")

def make_agent_from_claimset(svcname: str, userinfo: Mapping, log: Logger, agents=None) -> Agent:
    """
    return the Agent described by a JWT claim set.  The ``sub`` claim identifies the user, and
    ``groups`` (a list or a space-delimited string) names the user's groups.  Other claims, apart
    from the timing ones, are kept as Agent properties.  Without a ``sub`` claim, the user is
    anonymous.
    """
    subj = userinfo.get('sub')
    if not subj:
        log.warning("User token is missing subject identifier; defaulting to anonymous")
        return Agent(svcname, Agent.UNKN, Agent.ANONYMOUS, Agent.PUBLIC, agents)

    groups = userinfo.get('groups') or []
    if isinstance(groups, str):
        groups = groups.split()
    props = dict((k, v) for k, v in userinfo.items() if k not in _CLAIMS_NOT_KEPT)
    return Agent(svcname, Agent.USER, subj, Agent.PUBLIC, agents, groups, **props)


class WSGIAppSuite(AuthenticatedWSGIApp):
    """
    a WSGI application that brings several :py:class:`ServiceApp` instances together, each mounted
    at its own path below the base endpoint.  A request goes to the app mounted at the longest
    leading portion of its path.
    """

    def __init__(self, config: Mapping, svcapps: Mapping[str, ServiceApp], log: Logger,
                 base_ep: str = None):
        """
        :param dict  config:  the suite's configuration
        :param dict svcapps:  a map of mount paths (relative to the base endpoint) to ServiceApps
        :param Logger   log:  the suite's logger
        :param str  base_ep:  the base endpoint; overrides the ``base_ep`` configuration parameter
        """
        super(WSGIAppSuite, self).__init__(config, log, base_ep)
        self.svcapps = dict(svcapps.items())

    def _is_parent(self, path: str) -> bool:
        return any(p.startswith(path+'/') for p in self.svcapps)

    def handle_path_request(self, path: str, env: Mapping, start_resp: Callable, who = None):
        parts = [p for p in re.sub(r'/+', '/', path).split('/') if p]

        # try the longest mount path first
        for i in range(len(parts), -1, -1):
            mount = "/".join(parts[:i])
            if mount in self.svcapps:
                return self.svcapps[mount].handle_path_request(env, start_resp,
                                                               "/".join(parts[i:]), who)

        if any(self._is_parent("/".join(parts[:i])) for i in range(len(parts), 0, -1)):
            return Handler(path, env, start_resp).send_error(403, "Forbidden")
        return Handler(path, env, start_resp).send_error(404, "Not Found")

class WSGIServiceApp(WSGIAppSuite):
    """
    a WSGI application serving a single ServiceApp at the base endpoint
    """

    def __init__(self, svcapp: ServiceApp, log: Logger, base_ep: str = None, config: Mapping=None):
        super(WSGIServiceApp, self).__init__(config or {}, {'': svcapp}, log, base_ep)
