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

"""The entry point of the `sharedata` jobs.

A job message looks like:

    {
        "event": "updated",
        "docid": "2e4b0d24",
        "doctype": "io.cozy.files",
        "type": "file",
        "recipients": [
            {"url": "bob.example.net", "scheme": "https", "token": "..."}
        ],
        "selector": "referenced_by",
        "values": ["io.cozy.photos.albums/123"]
    }

`event` defaults to "created". `type` is only looked at for files and
directories which may be gone from the local store, ie when they are deleted
or no longer referenced.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict

import jsonschema

from sharedata.api.constants import Doctypes, FileTypes, SharingEvents
from sharedata.api.errors import InvalidMessageError, NotFoundError
from sharedata.sharing.types import (
    DirMeta,
    JsonDict,
    ObjectKind,
    Recipient,
    SharingIntent,
    SharingScope,
)

if TYPE_CHECKING:
    from sharedata.server import SharingServer

logger = logging.getLogger(__name__)

MESSAGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["docid", "doctype", "recipients"],
    "properties": {
        "event": {"type": "string", "enum": list(SharingEvents.LIST)},
        "docid": {"type": "string", "minLength": 1},
        "doctype": {"type": "string", "minLength": 1},
        "type": {
            "type": "string",
            "enum": ["", FileTypes.FILE, FileTypes.DIRECTORY],
        },
        "recipients": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["url", "token"],
                "properties": {
                    "url": {"type": "string", "minLength": 1},
                    "scheme": {"type": "string", "enum": ["", "http", "https"]},
                    "token": {"type": "string"},
                },
            },
        },
        "selector": {"type": "string"},
        "values": {"type": "array", "items": {"type": "string"}},
    },
}

# the events after which the object may be gone from the local stores
_EVENTS_WITHOUT_LOCAL_OBJECT = (
    SharingEvents.DELETED,
    SharingEvents.REFERENCES_REMOVED,
)


class SharingWorker:
    """Runs the `sharedata` jobs."""

    def __init__(self, server: "SharingServer"):
        self.file_store = server.get_file_store()
        self.dispatcher = server.get_sharing_dispatcher()
        self._default_scheme = server.config.transport.default_scheme

    async def process(self, message: JsonDict) -> None:
        """Replays the change described by a job message at its recipients.

        Raises:
            InvalidMessageError: if the message is not well formed
            NotFoundError: if the object is not in the local stores
            RecipientErrors: if some recipients could not be brought up to date
        """
        try:
            jsonschema.validate(message, MESSAGE_SCHEMA)
        except jsonschema.ValidationError as e:
            raise InvalidMessageError(
                "Invalid sharing message: %s" % (e.message,)
            ) from e

        event = message.get("event") or SharingEvents.CREATED
        intent = await self.build_intent(message, event)

        logger.info(
            "Sharing %s of %s with %d recipient(s)",
            event,
            intent.path,
            len(intent.recipients),
        )
        await self.dispatcher.dispatch(intent, event)

    async def build_intent(self, message: JsonDict, event: str) -> SharingIntent:
        """Builds the intent of a validated job message."""
        recipients = [
            Recipient(
                url=rec["url"],
                token=rec["token"],
                scheme=rec.get("scheme") or self._default_scheme,
            )
            for rec in message["recipients"]
        ]
        scope = SharingScope(
            selector=message.get("selector") or None,
            values=message.get("values") or (),
        )

        return SharingIntent(
            doctype=message["doctype"],
            doc_id=message["docid"],
            kind=await self._resolve_kind(message, event),
            recipients=recipients,
            scope=scope,
        )

    async def _resolve_kind(self, message: JsonDict, event: str) -> ObjectKind:
        if message["doctype"] != Doctypes.FILES:
            logger.debug("Sending JSON (%s): %s", message["doctype"], message["docid"])
            return ObjectKind.GENERIC_DOC

        file_type = message.get("type")
        if file_type and event in _EVENTS_WITHOUT_LOCAL_OBJECT:
            return ObjectKind(file_type)

        local = await self.file_store.get_dir_or_file(message["docid"])
        if local is None:
            raise NotFoundError("No file or directory %s" % (message["docid"],))

        if isinstance(local, DirMeta):
            logger.debug("Sending directory: %s", local.id)
        else:
            logger.debug("Sending file: %s", local.id)
        return local.kind
