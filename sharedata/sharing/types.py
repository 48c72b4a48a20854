# Copyright 2026 The Matrix.org Foundation C.I.C.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""The values the sharing engine works on."""

import enum
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

import attr

from sharedata.api.constants import FileTypes, Selectors

# A JSON object, as decoded from the wire or read from the document store.
JsonDict = Dict[str, Any]

# The body of a recipient's copy of a generic document.
RemoteDocument = JsonDict

# The fields of a document which change on every write and so are left out
# when comparing two copies of it.
VOLATILE_FIELDS = ("_id", "_rev")


@attr.s(slots=True, frozen=True, auto_attribs=True)
class Recipient:
    """A node holding a replica of the shared objects.

    Attributes:
        url: the host, and optional port, of the node
        token: the bearer token the node gave us for this sharing
        scheme: "http" or "https"
    """

    url: str
    token: str
    scheme: str = "https"

    def base_uri(self) -> str:
        return "%s://%s" % (self.scheme, self.url)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class DocReference:
    """A "referenced_by" link from a file to another document."""

    type: str
    id: str

    def to_json(self) -> JsonDict:
        return {"id": self.id, "type": self.type}


class ObjectKind(enum.Enum):
    GENERIC_DOC = "generic-doc"
    FILE = FileTypes.FILE
    DIRECTORY = FileTypes.DIRECTORY


class Action(enum.Enum):
    """What has to be replayed at a recipient to bring it up to date."""

    CREATE = "create"
    REPLACE_CONTENT = "replace_content"
    PATCH_METADATA = "patch_metadata"
    UPDATE_REFERENCES_ONLY = "update_references_only"
    NO_OP = "no_op"


class _Absent(enum.Enum):
    # defining the sentinel in this way allows mypy to narrow the type of a
    # snapshot once it has been compared to ABSENT.
    absent = object()


# The snapshot of an object which does not exist at the recipient.
ABSENT = _Absent.absent


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SharingScope:
    """Which objects a sharing is about.

    Attributes:
        selector: None for a sharing listing its objects, or the name of the
            relation the shared objects are selected by.
        values: the ids of the shared objects, or for a "referenced_by"
            sharing the "doctype/id" of the documents the shared files are
            referenced by.
    """

    selector: Optional[str] = None
    values: Tuple[str, ...] = attr.ib(default=(), converter=tuple)

    @property
    def is_reference_based(self) -> bool:
        return self.selector == Selectors.REFERENCED_BY


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SharingIntent:
    """One local change to replay at the recipients of a sharing.

    Built once per job, and never modified: what is learnt about a given
    recipient (eg the revision of its copy) is passed along explicitly.
    """

    doctype: str
    doc_id: str
    kind: ObjectKind
    recipients: Tuple[Recipient, ...] = attr.ib(converter=tuple)
    scope: SharingScope = attr.Factory(SharingScope)

    @property
    def path(self) -> str:
        """The path of the object on the recipients' sharing API."""
        return "/sharings/doc/%s/%s" % (self.doctype, self.doc_id)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class DirMeta:
    """The metadata of a directory, local or remote.

    Timestamps are only known for local directories.
    """

    id: str
    rev: str
    name: str
    dir_id: str
    tags: Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    referenced_by: Tuple[DocReference, ...] = attr.ib(default=(), converter=tuple)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    kind = ObjectKind.DIRECTORY


@attr.s(slots=True, frozen=True, auto_attribs=True)
class FileMeta:
    """The metadata of a file, local or remote.

    Attributes:
        md5sum: the base64 encoded MD5 digest of the content
        size: the length of the content, in bytes
    """

    id: str
    rev: str
    name: str
    dir_id: str
    tags: Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    referenced_by: Tuple[DocReference, ...] = attr.ib(default=(), converter=tuple)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    mime: str = "application/octet-stream"
    size: int = 0
    md5sum: str = ""
    executable: bool = False

    kind = ObjectKind.FILE


DirOrFile = Union[DirMeta, FileMeta]

# What a recipient has of a file or directory.
DirOrFileSnapshot = Union[DirMeta, FileMeta, _Absent]

# What a recipient has of a generic document.
DocumentSnapshot = Union[RemoteDocument, _Absent]


def body_without_volatile_fields(doc: JsonDict) -> JsonDict:
    """Returns a copy of the document without the fields which change on every
    write, for comparing two copies of it. The document itself is left alone.
    """
    return {k: v for k, v in doc.items() if k not in VOLATILE_FIELDS}
