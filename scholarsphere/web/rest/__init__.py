"""
Framework classes for creating REST web interfaces via WSGI

The small framework provided by this module provides foundation classes for RESTful web APIs that
wrap around the repository's business services.  It features:
  *  a resource-based model for handling requests.  The :py:class:`~scholarsphere.web.rest.base.Handler`
     class handles a single resource (given by a path); routing is explicitly in the hands of the
     service implementation.
  *  the ability to compose multiple resources into a single WSGI application via the
     :py:class:`~scholarsphere.web.rest.base.ServiceApp` class.
  *  full but simple control over the returned HTTP status for proper error handling
  *  JSON-formatted error messages (see :py:mod:`~scholarsphere.web.rest.jsonerr`)

A thin web layer is wrapped around a business service class (e.g.
:py:class:`~scholarsphere.repo.files.GenericFileService`):  when responding to a request, the
:py:class:`~scholarsphere.web.rest.base.ServiceApp` creates a
:py:class:`~scholarsphere.web.rest.base.Handler` based on the requested resource path, and the
handler calls the service on behalf of the authenticated user.  A
:py:class:`~scholarsphere.web.rest.base.WSGIAppSuite` combines one or more ServiceApps under a
base URL path and authenticates users for all of them.
"""
from .base import *
