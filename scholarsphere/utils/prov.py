"""
Who did what to which object:  the identities behind requests and the audit records of changes.

An :py:class:`Agent` is the identity a request is made under:  the software *vehicle* that carried
the request (e.g. the web service or ``ssadm``) plus the *actor* (a user login or a functional
identity) that authorized it.  The access control layer decides on Agents, and every change to a
stored object is recorded as an :py:class:`Action` naming the Agent that made it.  An object's
audit log is its list of Actions, oldest first.
"""
import time, datetime, json
from collections import OrderedDict
from typing import List, Mapping, Iterable, Tuple

from jsonpatch import JsonPatch

PUBLIC_AGENT_CLASS = "public"
ADMIN_AGENT_CLASS = "admin"
INVALID_AGENT_CLASS = "invalid"
ANONYMOUS_USER = "anonymous"

class Agent(object):
    """
    the identity behind a request.  Besides its vehicle and actor, an Agent carries the
    permission groups its actor belongs to.  The first of its :py:attr:`groups` is always its
    :py:attr:`agent_class`, a group assigned according to how the agent was authenticated
    (``public`` by default; ``invalid`` when credentials were rejected).
    """
    USER: str = "user"
    AUTO: str = "auto"
    UNKN: str = ""
    PUBLIC: str = PUBLIC_AGENT_CLASS
    ADMIN: str = ADMIN_AGENT_CLASS
    INVALID: str = INVALID_AGENT_CLASS
    ANONYMOUS: str = ANONYMOUS_USER
    actor_types = (USER, AUTO, UNKN)

    def __init__(self, vehicle: str, actortype: str, actorid: str = None, agclass: str = None,
                 agents: Iterable[str] = None, groups: Iterable[str] = None, **kwargs):
        """
        :param str   vehicle:  the software component the request came through
        :param str actortype:  USER for a person, AUTO for a functional identity, or UNKN
        :param str   actorid:  the actor's identifier (e.g. a login name)
        :param str   agclass:  the agent class; ``public`` if not given
        :param list[str] agents:  the upstream agents this one acts for
        :param list[str] groups:  the permission groups the actor belongs to
        :param kwargs:  extra properties of the actor (e.g. ``email``); None values are dropped
        """
        if actortype not in self.actor_types:
            raise ValueError("Agent: actortype not one of "+str(self.actor_types))
        self._vehicle = vehicle
        self._actor_type = actortype
        self._actor = actorid
        self._agclass = agclass or PUBLIC_AGENT_CLASS
        self._groups = set(g for g in (groups or []) if g != self._agclass)
        self._agents = list(agents or [])
        self._md = OrderedDict((k, v) for k, v in kwargs.items() if v is not None)

    @property
    def actor(self) -> str:
        return self._actor

    @property
    def actor_type(self) -> str:
        return self._actor_type

    @property
    def vehicle(self) -> str:
        return self._vehicle

    @property
    def agent_class(self) -> str:
        return self._agclass

    @property
    def id(self) -> str:
        """
        the agent's identifier, *vehicle*/*actor*
        """
        return "%s/%s" % (self.vehicle, self.actor)

    @property
    def is_anonymous(self) -> bool:
        """
        True unless the actor is an identified user with valid credentials
        """
        return self.actor in (None, "", self.ANONYMOUS) or self.agent_class == self.INVALID

    @property
    def groups(self) -> Tuple[str]:
        return (self._agclass,) + tuple(sorted(self._groups))

    def is_in_group(self, group: str):
        return group in self.groups

    @property
    def delegated(self) -> Tuple[str]:
        """
        the chain of agents (services or tools) that passed the request along to this one.  It is
        recorded for auditing and plays no part in access decisions.
        """
        return tuple(self._agents)

    def get_prop(self, propname: str, defval=None):
        return self._md.get(propname, defval)

    def to_dict(self) -> Mapping:
        """
        return a JSON-ready description of this agent, as recorded in audit logs.  Actor properties
        are not included.
        """
        out = OrderedDict([("vehicle", self.vehicle), ("actor", self.actor),
                           ("type", self.actor_type), ("class", self.agent_class)])
        if self._groups:
            out['groups'] = sorted(self._groups)
        if self._agents:
            out['delegated'] = list(self._agents)
        return out

    def __str__(self):
        return self.id

    def __repr__(self):
        return "Agent(%s)" % self.id


def _jsonable(obj):
    if isinstance(obj, JsonPatch):
        return json.loads(obj.to_string())
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    if isinstance(obj, Mapping):
        return OrderedDict((k, _jsonable(v) if isinstance(v, JsonPatch) else v)
                           for k, v in obj.items())
    return obj

class Action(object):
    """
    the record of one change made to a stored object.  Its :py:attr:`subject` is the identifier of
    the changed object, and its :py:attr:`object` (optional) describes what was applied.  Types:

    ``CREATE``
        the object was created; the object holds its initial metadata
    ``PUT``
        a content version was added; the object describes the version
    ``PATCH``
        the metadata was updated; the object is the JSON Patch that was applied
    ``DELETE``
        the object was deleted
    ``PROCESS``
        the object went through some process (e.g. reindexing); the object names it
    ``COMMENT``
        any other note, often attached to another Action as a subaction

    An Action made of several steps lists them as :py:attr:`subactions`; these usually carry no
    timestamp of their own.
    """
    CREATE:  str = "CREATE"
    PUT:     str = "PUT"
    PATCH:   str = "PATCH"
    DELETE:  str = "DELETE"
    PROCESS: str = "PROCESS"
    COMMENT: str = "COMMENT"
    types = (CREATE, PUT, PATCH, DELETE, PROCESS, COMMENT)

    def __init__(self, acttype: str, subj: str, agent: Agent, msg: str = None, obj = None,
                 timestamp: float = 0.0, subacts: List["Action"] = None):
        """
        :param str    acttype:  one of the Action types
        :param str       subj:  the identifier of the changed object
        :param Agent    agent:  who made the change
        :param str        msg:  a short description of the change
        :param obj:             a description of what was applied
        :param float timestamp: when the change happened (epoch seconds); a value of 0 or less
                                means now, and None means the action has no time of its own.
        :param List[Action] subacts:  the steps making up this action
        """
        if acttype not in self.types:
            raise ValueError("Action: Not a recognized action type: "+str(acttype))
        self._type = acttype
        self._subj = subj
        self._agent = agent
        self.message = msg
        self._obj = obj
        self._time = time.time() if timestamp is not None and timestamp <= 0 else timestamp
        self._subacts = []
        for act in (subacts or []):
            self.add_subaction(act)

    @property
    def type(self) -> str:
        return self._type

    @property
    def subject(self) -> str:
        return self._subj

    @property
    def agent(self) -> Agent:
        return self._agent

    @property
    def object(self):
        return self._obj

    @property
    def timestamp(self) -> float:
        return self._time

    @property
    def date(self) -> str:
        """
        the timestamp as a UTC ISO 8601 string (e.g. ``2024-03-01 12:00:00.123Z``), or an empty
        string if the action has no timestamp
        """
        if not self._time:
            return ""
        when = datetime.datetime.fromtimestamp(self._time, datetime.timezone.utc)
        return when.replace(tzinfo=None).isoformat(sep=" ") + "Z"

    @property
    def subactions(self) -> List["Action"]:
        return list(self._subacts)

    def add_subaction(self, action: "Action") -> None:
        if not isinstance(action, Action):
            raise TypeError("add_subaction(): input is not an Action: "+str(action))
        self._subacts.append(action)

    def to_dict(self) -> Mapping:
        """
        return a JSON-ready form of this action, as saved in the audit log
        """
        out = OrderedDict([("type", self.type), ("subject", self.subject)])
        if self.agent:
            out['agent'] = self.agent.to_dict()
        if self.message is not None:
            out['message'] = self.message
        if self.timestamp:
            out['date'] = self.date
            out['timestamp'] = self.timestamp
        if self.object:
            out['object'] = _jsonable(self.object)
        if self._subacts:
            out['subactions'] = [a.to_dict() for a in self._subacts]
        return out
