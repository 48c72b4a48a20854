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

"""Replays local changes at the recipients of a sharing.

Every operation goes through all the recipients, each of them independently:
a recipient which cannot be brought up to date is logged and recorded, and
the others are still processed. Once they all have been, the failures are
raised together as a RecipientErrors.
"""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from prometheus_client import Counter

from sharedata.api.constants import SharingEvents
from sharedata.api.errors import (
    ContentOpenFailureError,
    InvalidSharingTargetError,
    MalformedRemoteResponseError,
    NotFoundError,
    RecipientErrors,
    RecipientFailure,
    SharingError,
)
from sharedata.sharing.classifier import classify_document, classify_file_or_dir
from sharedata.sharing.content import LazyFileHandle
from sharedata.sharing.placement import parent_container
from sharedata.sharing.references import missing_references, shared_references
from sharedata.sharing.transport import (
    build_metadata_patch,
    directory_create_params,
    file_upload_params,
)
from sharedata.sharing.types import (
    ABSENT,
    Action,
    DirMeta,
    DirOrFile,
    ObjectKind,
    Recipient,
    SharingIntent,
    body_without_volatile_fields,
)
from sharedata.util.async_helpers import concurrently_execute

if TYPE_CHECKING:
    from sharedata.server import SharingServer

logger = logging.getLogger(__name__)

sharing_actions_counter = Counter(
    "sharedata_sharing_actions", "Actions replayed at recipients", ["action"]
)
recipient_failures_counter = Counter(
    "sharedata_sharing_recipient_failures",
    "Recipients an operation failed for",
    ["operation"],
)

# the labels of the requests which are not the outcome of a classification
_DELETE = "delete"
_REMOVE_REFERENCES = "remove_references"


class SharingDispatcher:
    def __init__(self, server: "SharingServer"):
        self.document_store = server.get_document_store()
        self.file_store = server.get_file_store()
        self.transport = server.get_recipient_client()
        self.remote_state = server.get_remote_state_fetcher()

        self._max_concurrent_recipients = (
            server.config.sharing.max_concurrent_recipients
        )

    async def dispatch(self, intent: SharingIntent, event: str) -> None:
        """Replays a local change at all the recipients.

        Args:
            intent: the object and the recipients
            event: what happened to the object, one of SharingEvents

        Raises:
            RecipientErrors: if some recipients could not be brought up to date
            SharingError: if the operation could not be attempted at all
        """
        if event == SharingEvents.CREATED:
            await self.send_new_object(intent)
        elif event == SharingEvents.UPDATED:
            await self.send_update(intent)
        elif event == SharingEvents.DELETED:
            await self.delete_object(intent)
        elif event == SharingEvents.REFERENCES_REMOVED:
            await self.drop_sharing_references(intent)
        else:
            raise ValueError("Unknown sharing event %r" % (event,))

    async def _fan_out(
        self,
        operation: str,
        intent: SharingIntent,
        process: Callable[[Recipient], Awaitable[None]],
    ) -> None:
        """Runs `process` for every recipient of the intent.

        Raises:
            ContentOpenFailureError: if the content of the file to send could
                not be opened
            RecipientErrors: if `process` failed for some recipients
        """
        failures: List[RecipientFailure] = []
        content_error: Optional[ContentOpenFailureError] = None

        async def _process_recipient(recipient: Recipient) -> None:
            nonlocal content_error
            try:
                await process(recipient)
            except ContentOpenFailureError as e:
                content_error = e
            except SharingError as e:
                logger.warning(
                    "%s of %s failed for %s: %s",
                    operation,
                    intent.path,
                    recipient.url,
                    e,
                )
                recipient_failures_counter.labels(operation).inc()
                failures.append(RecipientFailure(recipient, operation, e))
            except Exception as e:
                logger.exception(
                    "Unexpected error in %s of %s for %s",
                    operation,
                    intent.path,
                    recipient.url,
                )
                recipient_failures_counter.labels(operation).inc()
                failures.append(RecipientFailure(recipient, operation, e))

        await concurrently_execute(
            _process_recipient, intent.recipients, self._max_concurrent_recipients
        )

        if content_error is not None:
            if failures:
                raise content_error from RecipientErrors(
                    failures, len(intent.recipients)
                )
            raise content_error
        if failures:
            raise RecipientErrors(failures, len(intent.recipients))

    async def _get_dir_or_file(self, intent: SharingIntent) -> DirOrFile:
        local = await self.file_store.get_dir_or_file(intent.doc_id)
        if local is None:
            raise NotFoundError("No file or directory %s" % (intent.doc_id,))
        return local

    async def send_new_object(self, intent: SharingIntent) -> None:
        """Creates the object at every recipient, without looking at what they
        have first.
        """
        if intent.kind == ObjectKind.GENERIC_DOC:
            doc = await self.document_store.get_doc(intent.doctype, intent.doc_id)
            body = body_without_volatile_fields(doc)

            async def _send_doc(recipient: Recipient) -> None:
                await self.transport.send_document(recipient, "POST", intent.path, body)
                sharing_actions_counter.labels(Action.CREATE.value).inc()

            await self._fan_out("send_new_object", intent, _send_doc)
            return

        local = await self._get_dir_or_file(intent)
        dir_id = parent_container(intent.scope, local.id, local.dir_id)

        if isinstance(local, DirMeta):
            directory = local

            async def _send_dir(recipient: Recipient) -> None:
                await self._create_directory(recipient, intent, directory, dir_id)

            await self._fan_out("send_new_object", intent, _send_dir)
            return

        with LazyFileHandle(self.file_store, local) as handle:

            async def _send_file(recipient: Recipient) -> None:
                await self._create_file(recipient, intent, handle, dir_id)

            await self._fan_out("send_new_object", intent, _send_file)

    async def send_update(self, intent: SharingIntent) -> None:
        """Brings the recipients' copies of a generic document up to date.

        Files and directories are handed over to `send_file_or_dir_update`.
        """
        if intent.kind != ObjectKind.GENERIC_DOC:
            await self.send_file_or_dir_update(intent)
            return

        doc = await self.document_store.get_doc(intent.doctype, intent.doc_id)

        async def _update_doc(recipient: Recipient) -> None:
            remote = await self.remote_state.fetch_document(
                recipient, intent.doctype, intent.doc_id
            )
            action = classify_document(doc, remote)

            if action == Action.NO_OP:
                logger.debug(
                    "%s is up to date at %s: skipping", intent.path, recipient.url
                )
            elif remote is ABSENT:
                await self.transport.send_document(
                    recipient, "POST", intent.path, body_without_volatile_fields(doc)
                )
            else:
                rev = remote.get("_rev")
                if not isinstance(rev, str):
                    raise MalformedRemoteResponseError(
                        "%s at %s has no revision" % (intent.path, recipient.url)
                    )
                body = dict(doc)
                body["_rev"] = rev
                await self.transport.send_document(recipient, "PUT", intent.path, body)

            sharing_actions_counter.labels(action.value).inc()

        await self._fan_out("send_update", intent, _update_doc)

    async def send_file_or_dir_update(self, intent: SharingIntent) -> None:
        """Brings the recipients' copies of a file or directory up to date.

        What is sent to each recipient depends on what it has: nothing at all
        if its copy is the same as ours, only the missing references, only the
        metadata, or the whole file.
        """
        local = await self._get_dir_or_file(intent)
        dir_id = parent_container(intent.scope, local.id, local.dir_id)

        if isinstance(local, DirMeta):

            async def _update_dir(recipient: Recipient) -> None:
                await self._update_dir_or_file(recipient, intent, local, None, dir_id)

            await self._fan_out("send_file_or_dir_update", intent, _update_dir)
            return

        # the content is only opened if a recipient needs the whole file
        with LazyFileHandle(self.file_store, local) as handle:

            async def _update_file(recipient: Recipient) -> None:
                await self._update_dir_or_file(recipient, intent, local, handle, dir_id)

            await self._fan_out("send_file_or_dir_update", intent, _update_file)

    async def _update_dir_or_file(
        self,
        recipient: Recipient,
        intent: SharingIntent,
        local: DirOrFile,
        handle: Optional[LazyFileHandle],
        dir_id: str,
    ) -> None:
        remote = await self.remote_state.fetch_dir_or_file(recipient, local.id)
        scope_refs = shared_references(intent.scope)
        action = classify_file_or_dir(local, remote, scope_refs)

        if remote is ABSENT:
            if handle is None:
                assert isinstance(local, DirMeta)
                await self._create_directory(recipient, intent, local, dir_id)
            else:
                await self._create_file(recipient, intent, handle, dir_id)
            return

        if action == Action.REPLACE_CONTENT:
            assert handle is not None
            await self._create_file(
                recipient, intent, handle, dir_id, rev=remote.rev, method="PUT"
            )
        elif action == Action.PATCH_METADATA:
            await self.transport.patch_metadata(
                recipient,
                intent.path,
                build_metadata_patch(local),
                rev=remote.rev,
                file_type=local.kind.value,
                dir_id=dir_id,
            )
        elif action == Action.UPDATE_REFERENCES_ONLY:
            refs = missing_references(
                local.referenced_by, remote.referenced_by, scope_refs
            )
            await self.transport.add_references(recipient, local.id, refs)
        else:
            logger.debug("%s is up to date at %s: skipping", intent.path, recipient.url)

        sharing_actions_counter.labels(action.value).inc()

    async def delete_object(self, intent: SharingIntent) -> None:
        """Deletes the object at every recipient, or puts it in their trash for
        a file or directory.

        A recipient which does not have the object is recorded as a failure.
        """
        file_type = None
        if intent.kind != ObjectKind.GENERIC_DOC:
            file_type = intent.kind.value

        async def _delete(recipient: Recipient) -> None:
            rev = await self.remote_state.fetch_revision(recipient, intent)
            await self.transport.delete(recipient, intent.path, rev, file_type)
            sharing_actions_counter.labels(_DELETE).inc()

        await self._fan_out("delete_object", intent, _delete)

    async def drop_sharing_references(self, intent: SharingIntent) -> None:
        """Tells the recipients that a file is no longer referenced by the
        documents the sharing is scoped by. Each recipient trashes the file
        if nothing else shares it.

        Raises:
            InvalidSharingTargetError: if the sharing is not reference based
        """
        if not intent.scope.is_reference_based:
            raise InvalidSharingTargetError(
                "References can only be dropped from a reference based sharing"
            )

        refs = shared_references(intent.scope)

        async def _remove_references(recipient: Recipient) -> None:
            await self.transport.remove_references(recipient, intent.doc_id, refs)
            sharing_actions_counter.labels(_REMOVE_REFERENCES).inc()

        await self._fan_out("drop_sharing_references", intent, _remove_references)

    async def _create_directory(
        self,
        recipient: Recipient,
        intent: SharingIntent,
        directory: DirMeta,
        dir_id: str,
    ) -> None:
        await self.transport.create_directory(
            recipient, intent.path, directory_create_params(directory, dir_id)
        )
        sharing_actions_counter.labels(Action.CREATE.value).inc()

    async def _create_file(
        self,
        recipient: Recipient,
        intent: SharingIntent,
        handle: LazyFileHandle,
        dir_id: str,
        rev: Optional[str] = None,
        method: str = "POST",
    ) -> None:
        """Uploads the whole file to a recipient.

        The query parameters are built afresh for every recipient.
        """
        scope_refs = None
        if intent.scope.is_reference_based:
            scope_refs = shared_references(intent.scope)

        params = file_upload_params(handle, scope_refs, dir_id, rev)
        await self.transport.send_file(recipient, method, intent.path, handle, params)
        if method == "POST":
            sharing_actions_counter.labels(Action.CREATE.value).inc()
