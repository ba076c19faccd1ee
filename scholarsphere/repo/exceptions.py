"""
The exceptions raised by the repository core.

All of them derive from :py:class:`RepositoryException`.  The web layer maps each onto an HTTP
response status:

==========================  ===========================================
:py:class:`ValidationError`     400 (Bad Input)
:py:class:`AccessDenied`        401 (anonymous user) or 403 (identified user)
:py:class:`ObjectNotFound`      404 (Not Found)
:py:class:`AlreadyExists`       409 (Conflict)
:py:class:`StorageUnavailable`  503 (Service Unavailable)
:py:class:`IndexOutOfSync`      503 (Service Unavailable); also logged as an alert
==========================  ===========================================
"""
from typing import List

from .. import ScholarSphereException

__all__ = [ "RepositoryException", "RepositoryObjectException", "ValidationError", "ObjectNotFound",
            "AccessDenied", "AlreadyExists", "IndexOutOfSync", "StorageUnavailable",
            "ConcurrentModification" ]

class RepositoryException(ScholarSphereException):
    """
    a general base Exception class for exceptions that occur while interacting with the repository
    """
    pass

class RepositoryObjectException(RepositoryException):
    """
    a base Exception class for repository exceptions that are associated with a specific stored
    object.  This class provides the object identifier via an ``object_id`` attribute.
    """
    def __init__(self, objid, message, cause=None, sys=None):
        super(RepositoryObjectException, self).__init__(message, cause, sys)
        self.object_id = objid

class ValidationError(RepositoryObjectException):
    """
    an exception indicating that input data (for creating or updating an object) is invalid.

    The ``errors`` property will contain a list of messages, each describing an individual problem
    found; :py:meth:`format_errors` formats them for a text-based display.
    """
    def __init__(self, message: str=None, objid: str=None, errors: List[str]=None, sys=None):
        """
        initialize the exception
        :param str message:  a brief description of the problem with the input
        :param str   objid:  the id of the object that the data was provided for
        :param [str] errors: a listing of the individual errors uncovered in the data
        """
        if errors:
            if not message:
                if len(errors) == 1:
                    message = "Validation Error: " + errors[0]
                else:
                    message = "Encountered %d validation errors, including: %s" % (len(errors), errors[0])
        elif message:
            errors = [message]
        else:
            message = "Unknown validation errors encountered"
            errors = []

        super(ValidationError, self).__init__(objid, message, sys=sys)
        self.errors = errors

    def format_errors(self):
        """
        format into a string the listing of the validation errors encountered.  The returned string
        will have embedded newline characters for multi-line text-based display.
        """
        if not self.errors:
            return str(self)

        out = ""
        if self.object_id:
            out += "%s: " % self.object_id
        out += "Validation errors encountered:\n  * "
        out += "\n  * ".join([str(e) for e in self.errors])
        return out

class ObjectNotFound(RepositoryObjectException):
    """
    an exception indicating that the requested object, or a requested part of it, does not exist.
    """
    def __init__(self, objid, part=None, message=None, sys=None):
        """
        initialize this exception
        :param str   objid: the id of the object that was requested
        :param str    part: the part of the object that was requested (e.g. a content version id).
                            Do not provide this parameter if the entire object does not exist.
        :param str message: a brief description of the error
        """
        self.object_part = part
        if not message:
            if part:
                message = "Requested portion of object (id=%s) does not exist: %s" % (objid, part)
            else:
                message = "Requested object with id=%s does not exist" % objid
        super(ObjectNotFound, self).__init__(objid, message, sys=sys)

class AccessDenied(RepositoryException):
    """
    an exception indicating that the user attempted an operation that they are not authorized to
    """
    def __init__(self, who: str = None, op: str = None, objid: str = None, message: str = None,
                 anonymous: bool = False, sys=None):
        """
        create the exception
        :param str who:     the identifier of the user who requested the operation
        :param str op:      a brief phrase or term identifying the unauthorized operation (e.g.
                            "edit", "delete")
        :param str objid:   the identifier of the object the operation was requested on
        :param str message: the message describing why the exception was raised; if not given,
                            a default message is constructed from `who` and `op`.
        :param bool anonymous:  True if the requesting user was not authenticated
        """
        self.user_id = who
        self.operation = op
        self.object_id = objid
        self.anonymous = anonymous
        if not message:
            if not op:
                op = "effect an unspecified action"
            message = "User "
            if who:
                message += who + " "
            message += "is not authorized to {}".format(op)
            if objid:
                message += " " + objid
        super(AccessDenied, self).__init__(message, sys=sys)

class AlreadyExists(RepositoryObjectException):
    """
    an exception indicating a disallowed attempt to create an object with an identifier that is
    already in use.
    """
    def __init__(self, objid, message=None, sys=None):
        if not message:
            message = "Object with id=%s already exists" % objid
        super(AlreadyExists, self).__init__(objid, message, sys=sys)

class StorageUnavailable(RepositoryException):
    """
    an exception indicating that the backend storage could not be reached or failed to complete a
    request.  The operation may be retried by the caller.
    """
    def __init__(self, message=None, objid=None, cause=None, sys=None):
        super(StorageUnavailable, self).__init__(message, cause, sys)
        self.object_id = objid

class ConcurrentModification(StorageUnavailable):
    """
    an exception indicating that an object was changed by another writer while an update to it
    was being prepared.  Re-reading the object and retrying the update is expected to succeed.
    """
    def __init__(self, objid, message=None, sys=None):
        if not message:
            message = "Object with id=%s was modified concurrently; please retry" % objid
        super(ConcurrentModification, self).__init__(message, objid, sys=sys)

class IndexOutOfSync(RepositoryObjectException):
    """
    an exception indicating that an object was successfully changed in the object store but its
    search document could not be updated accordingly.  The store remains authoritative; the index
    can be repaired by re-indexing the object.
    """
    def __init__(self, objid, message=None, cause=None, sys=None):
        if not message:
            message = "Search index is out of sync with the store for object id=%s" % objid
            if cause:
                message += ": " + str(cause)
        super(IndexOutOfSync, self).__init__(objid, message, cause, sys)
