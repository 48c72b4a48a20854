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

"""The requests the sharing engine makes to the recipients.

Each method makes exactly one request to one recipient, authenticated with
the recipient's bearer token, and raises a TransportError when it fails.
"""

import logging
import urllib.parse
from typing import TYPE_CHECKING, Any, BinaryIO, Dict, List, Optional, Sequence

from sharedata.api.constants import (
    JSON_CONTENT_TYPE,
    JSONAPI_CONTENT_TYPE,
    TAG_SEPARATOR,
    Doctypes,
    FileTypes,
    QueryParams,
)
from sharedata.http.client import QueryArgs, RawHeaders
from sharedata.sharing.content import LazyFileHandle
from sharedata.sharing.types import (
    DirMeta,
    DirOrFile,
    DocReference,
    JsonDict,
    Recipient,
)
from sharedata.util import format_rfc1123, format_rfc3339, json_encoder

if TYPE_CHECKING:
    from sharedata.server import SharingServer

logger = logging.getLogger(__name__)


def _auth_headers(recipient: Recipient) -> Dict[str, List[str]]:
    return {"Authorization": ["Bearer %s" % (recipient.token,)]}


def file_upload_params(
    handle: LazyFileHandle,
    scope_refs: Optional[Sequence[DocReference]],
    dir_id: str,
    rev: Optional[str] = None,
) -> Dict[str, str]:
    """Builds the query parameters of a file upload.

    Args:
        handle: the file being sent
        scope_refs: the references of a reference based sharing, sent so that
            the recipient can set its permissions up. None for other sharings.
        dir_id: the parent directory the file gets at the recipient
        rev: the revision of the recipient's copy, when it has one
    """
    refs = ""
    if scope_refs is not None:
        refs = json_encoder.encode([ref.to_json() for ref in scope_refs])

    params = {
        QueryParams.TYPE: FileTypes.FILE,
        QueryParams.NAME: handle.file.name,
        QueryParams.EXECUTABLE: "true" if handle.executable else "false",
        QueryParams.CREATED_AT: handle.created_at,
        QueryParams.UPDATED_AT: handle.updated_at,
        QueryParams.REFERENCED_BY: refs,
        QueryParams.DIR_ID: dir_id,
    }
    if rev:
        params[QueryParams.REV] = rev
    return params


def directory_create_params(directory: DirMeta, dir_id: str) -> Dict[str, str]:
    """Builds the query parameters creating a directory at a recipient."""
    return {
        QueryParams.TAGS: TAG_SEPARATOR.join(directory.tags),
        QueryParams.NAME: directory.name,
        QueryParams.TYPE: FileTypes.DIRECTORY,
        QueryParams.CREATED_AT: (
            format_rfc1123(directory.created_at) if directory.created_at else ""
        ),
        QueryParams.UPDATED_AT: (
            format_rfc1123(directory.updated_at) if directory.updated_at else ""
        ),
        QueryParams.DIR_ID: dir_id,
    }


def build_metadata_patch(local: DirOrFile) -> JsonDict:
    """Builds the JSON:API document patching the metadata of a file or
    directory with those of the local copy.
    """
    attributes: JsonDict = {
        "name": local.name,
        "dir_id": local.dir_id,
        "tags": list(local.tags),
    }
    if local.updated_at is not None:
        attributes["updated_at"] = format_rfc3339(local.updated_at)

    return {
        "data": {
            "type": Doctypes.FILES,
            "id": local.id,
            "attributes": attributes,
            "meta": {"rev": local.rev},
        }
    }


class RecipientClient:
    """Makes the requests of the sharing API of the recipients."""

    def __init__(self, server: "SharingServer"):
        self.client = server.get_http_client()

    def _uri(self, recipient: Recipient, path: str) -> str:
        return recipient.base_uri() + urllib.parse.quote(path)

    async def _send(
        self,
        recipient: Recipient,
        method: str,
        path: str,
        args: Optional[QueryArgs] = None,
        headers: Optional[RawHeaders] = None,
        body: Optional[BinaryIO] = None,
    ) -> None:
        actual_headers = _auth_headers(recipient)
        if headers:
            actual_headers.update(headers)

        await self.client.send(
            method,
            self._uri(recipient, path),
            args=args,
            headers=actual_headers,
            body=body,
        )

    async def _send_json(
        self,
        recipient: Recipient,
        method: str,
        path: str,
        json_body: Any,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> None:
        await self.client.send_json(
            method,
            self._uri(recipient, path),
            json_body,
            headers=_auth_headers(recipient),
            content_type=content_type,
        )

    async def get_document(
        self, recipient: Recipient, doctype: str, doc_id: str
    ) -> Any:
        """Reads the recipient's copy of a generic document.

        Returns:
            the decoded JSON body

        Raises:
            TransportError
            ValueError: if the response was not JSON
        """
        return await self.client.get_json(
            self._uri(recipient, "/data/%s/%s" % (doctype, doc_id)),
            headers=_auth_headers(recipient),
        )

    async def get_dir_or_file(self, recipient: Recipient, file_id: str) -> Any:
        """Reads the recipient's copy of a file or directory.

        Returns:
            the decoded JSON:API document

        Raises:
            TransportError
            ValueError: if the response was not JSON
        """
        return await self.client.get_json(
            self._uri(recipient, "/files/%s" % (file_id,)),
            headers=_auth_headers(recipient),
        )

    async def send_document(
        self, recipient: Recipient, method: str, path: str, doc: JsonDict
    ) -> None:
        """Creates (POST) or replaces (PUT) a generic document."""
        await self._send_json(recipient, method, path, doc)

    async def send_file(
        self,
        recipient: Recipient,
        method: str,
        path: str,
        handle: LazyFileHandle,
        params: Dict[str, str],
    ) -> None:
        """Creates (POST) or replaces (PUT) a file, streaming its content.

        Raises:
            TransportError
            ContentOpenFailureError: if the content could not be opened
        """
        headers = {
            "Content-Type": [handle.mime],
            "Accept": [JSONAPI_CONTENT_TYPE],
            "Content-MD5": [handle.md5sum],
        }

        async def _upload(stream: BinaryIO) -> None:
            await self._send(
                recipient, method, path, args=params, headers=headers, body=stream
            )

        await handle.stream_to(_upload)

    async def create_directory(
        self, recipient: Recipient, path: str, params: Dict[str, str]
    ) -> None:
        await self._send(
            recipient,
            "POST",
            path,
            args=params,
            headers={"Content-Type": [JSON_CONTENT_TYPE]},
        )

    async def patch_metadata(
        self,
        recipient: Recipient,
        path: str,
        patch: JsonDict,
        rev: str,
        file_type: str,
        dir_id: str,
    ) -> None:
        """Patches the metadata of a file or directory.

        Args:
            recipient
            path: the path of the object on the sharing API
            patch: the JSON:API document, as built by `build_metadata_patch`
            rev: the revision of the recipient's copy
            file_type: "file" or "directory"
            dir_id: the parent directory the object gets at the recipient
        """
        args = {
            QueryParams.REV: rev,
            QueryParams.TYPE: file_type,
            QueryParams.DIR_ID: dir_id,
        }
        await self.client.send_json(
            "PATCH",
            self._uri(recipient, path),
            patch,
            args=args,
            headers=_auth_headers(recipient),
            content_type=JSONAPI_CONTENT_TYPE,
        )

    async def add_references(
        self, recipient: Recipient, file_id: str, refs: Sequence[DocReference]
    ) -> None:
        await self._send_json(
            recipient,
            "POST",
            "/files/%s/relationships/referenced_by" % (file_id,),
            {"data": [ref.to_json() for ref in refs]},
            content_type=JSONAPI_CONTENT_TYPE,
        )

    async def remove_references(
        self, recipient: Recipient, file_id: str, refs: Sequence[DocReference]
    ) -> None:
        """Removes references from a file. The recipient trashes the file if
        it is not shared with it by any other reference.
        """
        await self._send_json(
            recipient,
            "DELETE",
            "/sharings/files/%s/referenced_by" % (file_id,),
            {"data": [ref.to_json() for ref in refs]},
            content_type=JSONAPI_CONTENT_TYPE,
        )

    async def delete(
        self,
        recipient: Recipient,
        path: str,
        rev: str,
        file_type: Optional[str] = None,
    ) -> None:
        """Deletes an object, or puts a file or directory in the trash.

        Args:
            recipient
            path: the path of the object on the sharing API
            rev: the revision of the recipient's copy
            file_type: "file" or "directory", for files and directories only
        """
        args = {QueryParams.REV: rev}
        if file_type is not None:
            args[QueryParams.TYPE] = file_type

        await self._send(
            recipient,
            "DELETE",
            path,
            args=args,
            headers={
                "Content-Type": [JSON_CONTENT_TYPE],
                "Accept": [JSON_CONTENT_TYPE],
            },
        )
