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

import logging
from typing import TYPE_CHECKING, Any

from sharedata.api.constants import FileTypes, Selectors
from sharedata.api.errors import (
    ErrorKind,
    MalformedRemoteResponseError,
    NotFoundAtRecipientError,
    TransportError,
)
from sharedata.sharing.types import (
    ABSENT,
    DirMeta,
    DirOrFile,
    DirOrFileSnapshot,
    DocReference,
    DocumentSnapshot,
    FileMeta,
    ObjectKind,
    Recipient,
    SharingIntent,
)

if TYPE_CHECKING:
    from sharedata.server import SharingServer

logger = logging.getLogger(__name__)


class RemoteStateFetcher:
    """Fetches what a recipient currently has of an object.

    Snapshots are never cached: each call makes a request.
    """

    def __init__(self, server: "SharingServer"):
        self.transport = server.get_recipient_client()

    async def fetch_document(
        self, recipient: Recipient, doctype: str, doc_id: str
    ) -> DocumentSnapshot:
        """Fetches the recipient's copy of a generic document.

        Returns:
            the document, or ABSENT if the recipient does not have it

        Raises:
            TransportError: if the request failed for another reason
            MalformedRemoteResponseError: if the document could not be decoded
        """
        try:
            doc = await self.transport.get_document(recipient, doctype, doc_id)
        except TransportError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                return ABSENT
            raise
        except ValueError as e:
            raise MalformedRemoteResponseError(
                "Invalid JSON for %s/%s at %s: %s" % (doctype, doc_id, recipient.url, e)
            ) from e

        if not isinstance(doc, dict):
            raise MalformedRemoteResponseError(
                "%s/%s at %s is not a JSON object" % (doctype, doc_id, recipient.url)
            )
        return doc

    async def fetch_dir_or_file(
        self, recipient: Recipient, file_id: str
    ) -> DirOrFileSnapshot:
        """Fetches the recipient's copy of a file or directory.

        Returns:
            its metadata, or ABSENT if the recipient does not have it

        Raises:
            TransportError: if the request failed for another reason
            MalformedRemoteResponseError: if the metadata could not be decoded
        """
        try:
            doc = await self.transport.get_dir_or_file(recipient, file_id)
        except TransportError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                return ABSENT
            raise
        except ValueError as e:
            raise MalformedRemoteResponseError(
                "Invalid JSON for file %s at %s: %s" % (file_id, recipient.url, e)
            ) from e

        try:
            return parse_dir_or_file(doc)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedRemoteResponseError(
                "Bad file format for %s at %s: %s" % (file_id, recipient.url, e)
            ) from e

    async def fetch_revision(self, recipient: Recipient, intent: SharingIntent) -> str:
        """Fetches the revision of the recipient's copy of an object.

        Raises:
            NotFoundAtRecipientError: if the recipient does not have the object
            TransportError, MalformedRemoteResponseError: as for the fetches
        """
        if intent.kind == ObjectKind.GENERIC_DOC:
            doc = await self.fetch_document(recipient, intent.doctype, intent.doc_id)
            if doc is ABSENT:
                raise NotFoundAtRecipientError(
                    "%s/%s does not exist at %s"
                    % (intent.doctype, intent.doc_id, recipient.url)
                )
            rev = doc.get("_rev")
            if not isinstance(rev, str):
                raise MalformedRemoteResponseError(
                    "%s/%s at %s has no revision"
                    % (intent.doctype, intent.doc_id, recipient.url)
                )
            return rev

        snapshot = await self.fetch_dir_or_file(recipient, intent.doc_id)
        if snapshot is ABSENT:
            raise NotFoundAtRecipientError(
                "File %s does not exist at %s" % (intent.doc_id, recipient.url)
            )
        return snapshot.rev


def parse_dir_or_file(doc: Any) -> DirOrFile:
    """Parses the JSON:API document describing a remote file or directory.

    Raises:
        KeyError, TypeError, ValueError: if the document is not well formed
    """
    if not isinstance(doc, dict) or not isinstance(doc.get("data"), dict):
        raise ValueError("no data object")

    data = doc["data"]
    attributes = data.get("attributes") or {}
    meta = data.get("meta") or {}

    refs = []
    relationship = (data.get("relationships") or {}).get(Selectors.REFERENCED_BY)
    if isinstance(relationship, dict) and isinstance(relationship.get("data"), list):
        for ref in relationship["data"]:
            if isinstance(ref, dict):
                refs.append(
                    DocReference(type=ref.get("type", ""), id=ref.get("id", ""))
                )

    file_id = data["id"]
    rev = meta.get("rev", "")
    name = attributes.get("name", "")
    dir_id = attributes.get("dir_id", "")
    tags = attributes.get("tags") or ()
    if not isinstance(tags, list) and tags != ():
        raise TypeError("tags is not a list")

    file_type = attributes.get("type")
    if file_type == FileTypes.DIRECTORY:
        return DirMeta(
            id=file_id,
            rev=rev,
            name=name,
            dir_id=dir_id,
            tags=tags,
            referenced_by=refs,
        )
    if file_type == FileTypes.FILE:
        return FileMeta(
            id=file_id,
            rev=rev,
            name=name,
            dir_id=dir_id,
            tags=tags,
            referenced_by=refs,
            mime=attributes.get("mime", ""),
            size=int(attributes.get("size", 0)),
            md5sum=attributes.get("md5sum", ""),
            executable=bool(attributes.get("executable", False)),
        )
    raise ValueError("unknown type %r" % (file_type,))
