"""
The access control layer: stamping depositors onto new objects and deciding whether an agent may
view, edit, or delete an object.

The decisions made here are based solely on an object's access control lists
(:py:class:`~scholarsphere.repo.base.ACLs`) and on the identities represented by an
:py:class:`~scholarsphere.utils.prov.Agent`: its actor identifier and the groups it belongs to.
Group identities appear in ACLs with a ``group:`` prefix.  The object store uses this module only
to stamp depositors on new objects; the access decisions are left to the business services and the
web layer.
"""
import logging
from typing import Iterable, Set

from .base import StoredObject, ACLs, PUBLIC_GROUP, REGISTERED_GROUP, AccessDenied, sys
from ..utils.prov import Agent

VIEW = "view"
EDIT = "edit"
DELETE = "delete"
ACTIONS = (VIEW, EDIT, DELETE)

_required_perms = {
    VIEW:   (ACLs.READ, ACLs.EDIT),
    EDIT:   (ACLs.EDIT,),
    DELETE: (ACLs.EDIT,)
}

log = sys.getSysLogger().getChild("access")

def apply_depositor_metadata(obj: StoredObject, principal: str, logger: logging.Logger = None) -> bool:
    """
    record the given principal as the depositor of the object, granting it edit and read access.
    This takes effect only once per object: if the depositor has already been set, a warning is
    logged and the object is left unchanged.
    :return:  True if the depositor was set, False if the call had no effect
    """
    if not logger:
        logger = log
    if obj.stamp_depositor(principal):
        logger.debug("%s: depositor set to %s", obj.id, principal)
        return True
    logger.warning("%s: depositor already set to %s; ignoring attempt to set it to %s",
                   obj.id, obj.depositor, principal)
    return False

def principals_for(who: Agent, public_group: str = PUBLIC_GROUP) -> Set[str]:
    """
    return the set of identities that the given agent can be granted permissions through
    """
    out = set([public_group])
    if who is None:
        return out
    if not who.is_anonymous:
        out.add(who.actor)
        out.add(REGISTERED_GROUP)
    for grp in who.groups:
        if grp:
            out.add(grp if grp.startswith("group:") else "group:"+grp)
    return out

def check_access(obj: StoredObject, who: Agent, action: str, superusers: Iterable[str] = (),
                 public_group: str = PUBLIC_GROUP) -> bool:
    """
    return True if the agent is allowed to carry out the given action on the object.  This function
    has no side effects.

    :param StoredObject obj:  the object to be acted on
    :param Agent        who:  the agent wishing to act
    :param str       action:  one of ``view``, ``edit``, or ``delete``
    :param superusers:  the identifiers of users that are allowed to do anything
    """
    if action not in _required_perms:
        raise ValueError("check_access(): unrecognized action: "+str(action))
    if who is not None and not who.is_anonymous and who.actor in superusers:
        return True
    ids = principals_for(who, public_group)
    if who is not None and who.is_anonymous:
        # the public group is the only identity an anonymous agent holds
        ids = set([public_group])
    return any(obj.acls._granted(perm, ids) for perm in _required_perms[action])

def require_access(obj: StoredObject, who: Agent, action: str, superusers: Iterable[str] = (),
                   public_group: str = PUBLIC_GROUP):
    """
    raise an AccessDenied exception unless the agent is allowed to carry out the given action on
    the object.
    """
    if not check_access(obj, who, action, superusers, public_group):
        anon = who is None or who.is_anonymous
        raise AccessDenied(None if anon else who.actor, action, obj.id, anonymous=anon)
