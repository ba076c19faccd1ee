"""
The descriptive metadata schema for repository objects and the typed, allow-listed forms of the
requests that change it.

The schema is fixed and versioned: every stored object records the :py:data:`SCHEMA_VERSION` it
was written under.  Metadata is a mapping of field names to lists of strings (all fields are
multi-valued).  The fields a generic file may carry are the Dublin Core-based terms listed in
:py:data:`GENERIC_FILE_TERMS`.
"""
from collections import OrderedDict
from collections.abc import Mapping
from typing import List, Tuple

from .exceptions import ValidationError

SCHEMA_VERSION = "ss-generic-file/1"

GENERIC_FILE = "GenericFile"
COLLECTION = "Collection"

# (display label, field name), in the order they are presented on edit forms
GENERIC_FILE_TERMS = OrderedDict([
    ("Based Near",   "based_near"),
    ("Contributor",  "contributor"),
    ("Creator",      "creator"),
    ("Date Created", "date_created"),
    ("Description",  "description"),
    ("Identifier",   "identifier"),
    ("Language",     "language"),
    ("Publisher",    "publisher"),
    ("Rights",       "rights"),
    ("Subject",      "subject"),
    ("Tag",          "tag"),
    ("Title",        "title"),
    ("Related URL",  "related_url")
])
GENERIC_FILE_FIELDS = tuple(GENERIC_FILE_TERMS.values())

COLLECTION_FIELDS = ("title", "description", "creator", "contributor", "subject", "tag",
                     "related_url", "rights", "language", "publisher", "date_created",
                     "identifier", "based_near")

_FIELDS = {
    GENERIC_FILE: GENERIC_FILE_FIELDS,
    COLLECTION:   COLLECTION_FIELDS
}

# form parameters that travel with an update but are never metadata
RESERVED_PARAMS = ("Filedata", "Filename", "filedata", "revision")

def fields_for(model: str) -> Tuple[str]:
    """
    return the names of the metadata fields an object of the given model may carry
    :raises ValueError:  if the model is not recognized
    """
    try:
        return _FIELDS[model]
    except KeyError:
        raise ValueError("Unrecognized object model: "+str(model))

def terms_listing() -> List[List[str]]:
    """
    return the generic file terms as a list of [label, field] pairs
    """
    return [[label, field] for label, field in GENERIC_FILE_TERMS.items()]

def normalize_values(value) -> List[str]:
    """
    convert a field value into the list-of-strings form used in stored metadata.  None becomes
    an empty list; a scalar becomes a one-element list; empty strings are dropped.
    """
    if value is None:
        return []
    if isinstance(value, (str, bytes, int, float)):
        value = [value]
    out = []
    for v in value:
        if isinstance(v, bytes):
            v = v.decode('utf-8')
        if v is None:
            continue
        v = str(v)
        if v.strip():
            out.append(v)
    return out

def check_fields(model: str, data: Mapping, reject_unknown: bool = True, objid: str = None) \
        -> Tuple[Mapping, List[str]]:
    """
    split the given metadata into the fields that are allowed for the model and those that are not.
    :param str   model:  the model of the object the data is intended for
    :param dict   data:  the metadata, field names to values
    :param bool reject_unknown:  if True, raise a ValidationError if any field is not allowed
    :return:  a 2-tuple of the allowed fields (with their values normalized) and a list of the
              names of the fields that are not allowed (empty if reject_unknown is True)
    :raises ValidationError:  if reject_unknown is True and there are unknown fields
    """
    allowed = fields_for(model)
    out = OrderedDict()
    unknown = []
    for field, value in data.items():
        if field in allowed:
            out[field] = normalize_values(value)
        else:
            unknown.append(field)

    if unknown and reject_unknown:
        raise ValidationError(objid=objid,
                              errors=["%s: not a recognized %s field" % (f, model) for f in unknown])
    return out, unknown


class FileUpdateRequest(object):
    """
    the typed form of a request to update a generic file.  Only the fields named in the schema are
    passed through as metadata; everything else in the request is either one of the recognized
    control parameters (``revision``, ``filedata``) or is rejected (or ignored, depending on the
    ``reject_unknown`` setting).
    """

    def __init__(self, metadata: Mapping = None, revision: str = None, filedata: bytes = None,
                 filename: str = None, mime_type: str = None, ignored: List[str] = None):
        self.metadata = metadata if metadata is not None else OrderedDict()
        self.revision = revision
        self.filedata = filedata
        self.filename = filename
        self.mime_type = mime_type
        self.ignored = ignored or []

    @property
    def has_content(self) -> bool:
        return self.filedata is not None

    @classmethod
    def from_json(cls, data: Mapping, reject_unknown: bool = True, objid: str = None):
        """
        build the request from a JSON request body.  The metadata is expected as an object in the
        ``generic_file`` property; a ``revision`` property may also be given.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Update request body is not a JSON object", objid)
        extra = [k for k in data.keys() if k not in ("generic_file", "revision")]
        md = data.get("generic_file", {})
        if not isinstance(md, Mapping):
            raise ValidationError("generic_file: not an object", objid)
        md = OrderedDict((k, v) for k, v in md.items() if k not in RESERVED_PARAMS)

        md, unknown = check_fields(GENERIC_FILE, md, reject_unknown, objid)
        if extra and reject_unknown:
            raise ValidationError(objid=objid, errors=["%s: unrecognized request parameter" % k
                                                       for k in extra])
        revision = data.get("revision")
        if revision is not None and not isinstance(revision, str):
            raise ValidationError("revision: not a string", objid)
        return cls(md, revision or None, ignored=unknown+extra)

    @classmethod
    def from_form(cls, params: Mapping, files: Mapping = None, reject_unknown: bool = True,
                  objid: str = None):
        """
        build the request from HTML form parameters.  Metadata fields are given as
        ``generic_file[FIELD]`` (or ``generic_file[FIELD][]`` for multiple values); the optional
        uploaded replacement content is given as the ``filedata`` file.

        :param dict params:  a mapping of parameter names to lists of values
        :param dict  files:  a mapping of file parameter names to (filename, bytes, mime-type) tuples
        """
        md = OrderedDict()
        extra = []
        revision = None
        for name, vals in params.items():
            if name == "revision":
                revision = vals[0] if vals else None
                continue
            if name.startswith("generic_file[") and name.endswith("]"):
                field = name[len("generic_file["):].rstrip("[]")
                if field in RESERVED_PARAMS:
                    continue
                md.setdefault(field, []).extend(vals)
            elif name not in RESERVED_PARAMS:
                extra.append(name)

        md, unknown = check_fields(GENERIC_FILE, md, reject_unknown, objid)
        if extra and reject_unknown:
            raise ValidationError(objid=objid, errors=["%s: unrecognized request parameter" % k
                                                       for k in extra])

        filedata = filename = mime = None
        if files and files.get("filedata"):
            filename, filedata, mime = files["filedata"]
            if not filedata:
                raise ValidationError("filedata: uploaded file is empty", objid)
        return cls(md, revision or None, filedata, filename, mime, unknown+extra)
