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

import io
from typing import Any, Dict, List, Optional, Set, Tuple
from unittest.mock import Mock, patch

import attr

from twisted.internet import defer

from sharedata.api.errors import (
    ContentOpenFailureError,
    HttpResponseException,
    InvalidSharingTargetError,
    NotFoundAtRecipientError,
    RecipientErrors,
    RequestSendFailed,
)
from sharedata.sharing.types import (
    DirMeta,
    DocReference,
    FileMeta,
    ObjectKind,
    Recipient,
    SharingIntent,
    SharingScope,
)

from tests import unittest
from tests.test_utils import FakeFileStore, FakeResponse, simple_async_mock

BOB = Recipient(url="bob.example.net", token="bob-token")
CAROL = Recipient(url="carol.example.net", token="carol-token")
DAVE = Recipient(url="dave.example.net", token="dave-token")

ALBUM = DocReference(type="io.cozy.photos.albums", id="album")
ALBUM_SCOPE = SharingScope(
    selector="referenced_by", values=["io.cozy.photos.albums/album"]
)

PHOTO = FileMeta(
    id="photo",
    rev="2-local",
    name="photo.jpg",
    dir_id="holidays",
    tags=["a"],
    mime="image/jpeg",
    size=12,
    md5sum="h1",
)

HOLIDAYS = DirMeta(id="holidays", rev="1-local", name="Holidays", dir_id="parent")


@attr.s(slots=True, frozen=True, auto_attribs=True)
class Request:
    method: str
    uri: str
    args: Optional[Dict[str, str]]
    body: Any


class FakeRecipients:
    """Stands in for the HTTP client, answering for all the recipients.

    Attributes:
        documents: what the recipients answer to GET requests, by URI. Missing
            URIs get a 404.
        failing_hosts: the recipients which fail every write
        requests: the write requests received, in order
    """

    def __init__(self) -> None:
        self.documents: Dict[str, Any] = {}
        self.failing_hosts: Set[str] = set()
        self.unreachable_hosts: Set[str] = set()
        self.requests: List[Request] = []

    def _check_host(self, uri: str) -> None:
        host = uri.split("/")[2]
        if host in self.unreachable_hosts:
            raise RequestSendFailed(ConnectionRefusedError(), can_retry=True)
        if host in self.failing_hosts:
            raise HttpResponseException(500, "Internal Server Error", b"")

    async def get_json(self, uri: str, args=None, headers=None) -> Any:
        self._check_host(uri)
        value = self.documents.get(uri)
        if value is None:
            raise HttpResponseException(404, "Not Found", b"")
        return value

    async def send(self, method, uri, args=None, headers=None, body=None) -> bytes:
        self._check_host(uri)
        content = body.read() if body is not None else None
        self.requests.append(Request(method, uri, args, content))
        return b""

    async def send_json(
        self, method, uri, json_body, args=None, headers=None, content_type=None
    ) -> bytes:
        self._check_host(uri)
        self.requests.append(Request(method, uri, args, json_body))
        return b""

    def requests_to(self, recipient: Recipient) -> List[Request]:
        return [r for r in self.requests if r.uri.split("/")[2] == recipient.url]


def remote_file(
    local: FileMeta, rev: str = "5-remote", refs=(), **overrides: Any
) -> Dict[str, Any]:
    """Builds the JSON:API document a recipient answers for its copy of a file."""
    attributes = {
        "type": "file",
        "name": local.name,
        "dir_id": local.dir_id,
        "tags": list(local.tags),
        "md5sum": local.md5sum,
        "mime": local.mime,
        "size": str(local.size),
    }
    attributes.update(overrides)
    return {
        "data": {
            "type": "io.cozy.files",
            "id": local.id,
            "attributes": attributes,
            "meta": {"rev": rev},
            "relationships": {
                "referenced_by": {"data": [ref.to_json() for ref in refs]}
            },
        }
    }


def file_intent(recipients, scope=None, file_id="photo", kind=ObjectKind.FILE):
    return SharingIntent(
        doctype="io.cozy.files",
        doc_id=file_id,
        kind=kind,
        recipients=recipients,
        scope=scope or SharingScope(),
    )


class DispatcherTestCase(unittest.SharingServerTestCase):
    def make_server(self, reactor):
        self.recipients = FakeRecipients()
        self.file_store = FakeFileStore(content=b"some content")
        self.document_store = Mock()
        return self.setup_test_server(
            http_client=self.recipients,
            file_store=self.file_store,
            document_store=self.document_store,
        )

    def prepare(self, reactor, server):
        self.dispatcher = server.get_sharing_dispatcher()
        self.file_store.add(PHOTO)
        self.file_store.add(HOLIDAYS)

    def file_uri(self, recipient: Recipient, file_id: str = "photo") -> str:
        return "https://%s/files/%s" % (recipient.url, file_id)

    def assert_content_released(self) -> None:
        for stream in self.file_store.opened:
            self.assertEqual(stream.close_count, 1)


class SendNewObjectTestCase(DispatcherTestCase):
    def test_new_document(self) -> None:
        self.document_store.get_doc = simple_async_mock(
            {"_id": "1", "_rev": "1-a", "title": "Dinner"}
        )
        intent = SharingIntent(
            doctype="io.cozy.events",
            doc_id="1",
            kind=ObjectKind.GENERIC_DOC,
            recipients=[BOB, CAROL],
        )

        self.get_success(self.dispatcher.send_new_object(intent))

        for recipient in (BOB, CAROL):
            (request,) = self.recipients.requests_to(recipient)
            self.assertEqual(request.method, "POST")
            self.assertEqual(
                request.uri,
                "https://%s/sharings/doc/io.cozy.events/1" % (recipient.url,),
            )
            self.assertEqual(request.body, {"title": "Dinner"})

    def test_new_file_opens_content_once(self) -> None:
        intent = file_intent([BOB, CAROL, DAVE])

        self.get_success(self.dispatcher.send_new_object(intent))

        self.assertEqual(len(self.file_store.opened), 1)
        self.assert_content_released()

        self.assertEqual(len(self.recipients.requests), 3)
        for request in self.recipients.requests:
            self.assertEqual(request.method, "POST")
            # every upload reads the whole content
            self.assertEqual(request.body, b"some content")
            self.assertEqual(request.args["dir_id"], "holidays")
            self.assertEqual(request.args["referenced_by"], "")
            self.assertNotIn("rev", request.args)

    def test_listed_file_goes_in_shared_with_me(self) -> None:
        intent = file_intent([BOB], scope=SharingScope(values=["photo"]))

        self.get_success(self.dispatcher.send_new_object(intent))

        (request,) = self.recipients.requests
        self.assertEqual(request.args["dir_id"], "io.cozy.files.shared-with-me-dir")

    def test_new_file_with_references(self) -> None:
        intent = file_intent([BOB], scope=ALBUM_SCOPE)

        self.get_success(self.dispatcher.send_new_object(intent))

        (request,) = self.recipients.requests
        self.assertEqual(request.args["dir_id"], "io.cozy.files.shared-with-me-dir")
        self.assertEqual(
            request.args["referenced_by"],
            '[{"id":"album","type":"io.cozy.photos.albums"}]',
        )

    def test_new_directory(self) -> None:
        intent = file_intent([BOB], file_id="holidays", kind=ObjectKind.DIRECTORY)

        self.get_success(self.dispatcher.send_new_object(intent))

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.args["type"], "directory")
        self.assertEqual(request.args["name"], "Holidays")
        self.assertIsNone(request.body)
        self.assertEqual(self.file_store.opened, [])

    def test_root_cannot_be_shared(self) -> None:
        root = DirMeta(id="io.cozy.files.root-dir", rev="1-a", name="", dir_id="")
        self.file_store.add(root)
        intent = file_intent([BOB], file_id=root.id, kind=ObjectKind.DIRECTORY)

        self.get_failure(
            self.dispatcher.send_new_object(intent), InvalidSharingTargetError
        )
        self.assertEqual(self.recipients.requests, [])

    def test_partial_failure(self) -> None:
        self.recipients.failing_hosts.add(BOB.url)
        intent = file_intent([BOB, CAROL])

        f = self.get_failure(self.dispatcher.send_new_object(intent), RecipientErrors)

        self.assertEqual([r.recipient for r in f.value.failures], [BOB])
        self.assertEqual(f.value.attempted, 2)
        self.assertFalse(f.value.all_failed)
        self.assertIsInstance(f.value.failures[0].cause, HttpResponseException)

        # carol was still sent the file, from the start
        (request,) = self.recipients.requests_to(CAROL)
        self.assertEqual(request.body, b"some content")
        self.assertEqual(len(self.file_store.opened), 1)
        self.assert_content_released()

    def test_all_failed(self) -> None:
        self.recipients.failing_hosts.add(BOB.url)
        self.recipients.unreachable_hosts.add(CAROL.url)
        intent = file_intent([BOB, CAROL])

        f = self.get_failure(self.dispatcher.send_new_object(intent), RecipientErrors)
        self.assertEqual(len(f.value.failures), 2)
        self.assertTrue(f.value.all_failed)

    def test_content_open_failure(self) -> None:
        self.file_store.fail_open = True
        intent = file_intent([BOB, CAROL])

        self.get_failure(
            self.dispatcher.send_new_object(intent), ContentOpenFailureError
        )
        self.assertEqual(self.recipients.requests, [])

    @unittest.override_config({"sharing": {"max_concurrent_recipients": 1}})
    def test_one_recipient_at_a_time(self) -> None:
        self.document_store.get_doc = simple_async_mock({"_id": "1", "title": "x"})
        intent = SharingIntent(
            doctype="io.cozy.events",
            doc_id="1",
            kind=ObjectKind.GENERIC_DOC,
            recipients=[BOB, CAROL, DAVE],
        )

        self.get_success(self.dispatcher.send_new_object(intent))

        hosts = [r.uri.split("/")[2] for r in self.recipients.requests]
        self.assertEqual(hosts, [BOB.url, CAROL.url, DAVE.url])


class SendUpdateTestCase(DispatcherTestCase):
    def test_document_unchanged(self) -> None:
        self.document_store.get_doc = simple_async_mock(
            {"_id": "1", "_rev": "2-local", "title": "Dinner"}
        )
        self.recipients.documents["https://bob.example.net/data/io.cozy.events/1"] = {
            "_id": "1",
            "_rev": "7-remote",
            "title": "Dinner",
        }
        intent = SharingIntent(
            doctype="io.cozy.events",
            doc_id="1",
            kind=ObjectKind.GENERIC_DOC,
            recipients=[BOB],
        )

        self.get_success(self.dispatcher.send_update(intent))
        self.assertEqual(self.recipients.requests, [])

    def test_document_changed(self) -> None:
        self.document_store.get_doc = simple_async_mock(
            {"_id": "1", "_rev": "2-local", "title": "Dinner at 8"}
        )
        self.recipients.documents["https://bob.example.net/data/io.cozy.events/1"] = {
            "_id": "1",
            "_rev": "7-remote",
            "title": "Dinner",
        }
        intent = SharingIntent(
            doctype="io.cozy.events",
            doc_id="1",
            kind=ObjectKind.GENERIC_DOC,
            recipients=[BOB, CAROL],
        )

        self.get_success(self.dispatcher.send_update(intent))

        (put,) = self.recipients.requests_to(BOB)
        self.assertEqual(put.method, "PUT")
        self.assertEqual(
            put.body, {"_id": "1", "_rev": "7-remote", "title": "Dinner at 8"}
        )

        # carol does not have the document yet
        (post,) = self.recipients.requests_to(CAROL)
        self.assertEqual(post.method, "POST")
        self.assertEqual(post.body, {"title": "Dinner at 8"})

    def test_file_unchanged(self) -> None:
        self.recipients.documents[self.file_uri(BOB)] = remote_file(PHOTO)

        self.get_success(self.dispatcher.send_file_or_dir_update(file_intent([BOB])))

        self.assertEqual(self.recipients.requests, [])
        self.assertEqual(self.file_store.opened, [])

    def test_file_absent(self) -> None:
        self.get_success(self.dispatcher.send_file_or_dir_update(file_intent([BOB])))

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.body, b"some content")

    def test_content_changed(self) -> None:
        self.recipients.documents[self.file_uri(BOB)] = remote_file(
            PHOTO, md5sum="h2"
        )

        self.get_success(self.dispatcher.send_file_or_dir_update(file_intent([BOB])))

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "PUT")
        self.assertEqual(request.args["rev"], "5-remote")
        self.assertEqual(request.body, b"some content")
        self.assert_content_released()

    def test_content_failure_keeps_recipient_failures(self) -> None:
        self.recipients.failing_hosts.add(BOB.url)
        self.recipients.documents[self.file_uri(CAROL)] = remote_file(
            PHOTO, md5sum="h2"
        )
        self.file_store.fail_open = True

        f = self.get_failure(
            self.dispatcher.send_file_or_dir_update(file_intent([BOB, CAROL])),
            ContentOpenFailureError,
        )

        cause = f.value.__cause__
        self.assertIsInstance(cause, RecipientErrors)
        self.assertEqual([e.recipient for e in cause.failures], [BOB])
        self.assertEqual(cause.attempted, 2)

    def test_metadata_changed(self) -> None:
        self.recipients.documents[self.file_uri(BOB)] = remote_file(
            PHOTO, tags=["a", "b"]
        )

        # files are handed over by send_update too
        self.get_success(self.dispatcher.send_update(file_intent([BOB])))

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "PATCH")
        self.assertEqual(
            request.uri, "https://bob.example.net/sharings/doc/io.cozy.files/photo"
        )
        self.assertEqual(
            request.args, {"rev": "5-remote", "type": "file", "dir_id": "holidays"}
        )
        self.assertEqual(request.body["data"]["attributes"]["tags"], ["a"])
        self.assertEqual(request.body["data"]["attributes"]["name"], "photo.jpg")

        # only the metadata was needed
        self.assertEqual(self.file_store.opened, [])

    def test_references_missing(self) -> None:
        local = attr.evolve(PHOTO, referenced_by=[ALBUM])
        self.file_store.add(local)
        self.recipients.documents[self.file_uri(BOB)] = remote_file(PHOTO)

        self.get_success(
            self.dispatcher.send_file_or_dir_update(
                file_intent([BOB], scope=ALBUM_SCOPE)
            )
        )

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "POST")
        self.assertEqual(
            request.uri,
            "https://bob.example.net/files/photo/relationships/referenced_by",
        )
        self.assertEqual(request.body, {"data": [ALBUM.to_json()]})

    def test_directory_renamed(self) -> None:
        self.recipients.documents[self.file_uri(BOB, "holidays")] = {
            "data": {
                "type": "io.cozy.files",
                "id": "holidays",
                "attributes": {
                    "type": "directory",
                    "name": "Old name",
                    "dir_id": "parent",
                },
                "meta": {"rev": "3-remote"},
            }
        }
        intent = file_intent([BOB], file_id="holidays", kind=ObjectKind.DIRECTORY)

        self.get_success(self.dispatcher.send_file_or_dir_update(intent))

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "PATCH")
        self.assertEqual(request.args["type"], "directory")
        self.assertEqual(request.body["data"]["attributes"]["name"], "Holidays")

    def test_malformed_remote_is_recorded(self) -> None:
        self.recipients.documents[self.file_uri(BOB)] = {"errors": []}
        self.recipients.documents[self.file_uri(CAROL)] = remote_file(
            PHOTO, md5sum="h2"
        )

        f = self.get_failure(
            self.dispatcher.send_file_or_dir_update(file_intent([BOB, CAROL])),
            RecipientErrors,
        )
        self.assertEqual([r.recipient for r in f.value.failures], [BOB])
        self.assertEqual(len(self.recipients.requests_to(CAROL)), 1)


class DeleteTestCase(DispatcherTestCase):
    def test_delete_file(self) -> None:
        self.recipients.documents[self.file_uri(BOB)] = remote_file(PHOTO)

        self.get_success(self.dispatcher.delete_object(file_intent([BOB])))

        (request,) = self.recipients.requests
        self.assertEqual(request.method, "DELETE")
        self.assertEqual(request.args, {"rev": "5-remote", "type": "file"})

    def test_delete_document_not_at_recipient(self) -> None:
        self.recipients.documents["https://bob.example.net/data/io.cozy.events/1"] = {
            "_id": "1",
            "_rev": "3-remote",
        }
        intent = SharingIntent(
            doctype="io.cozy.events",
            doc_id="1",
            kind=ObjectKind.GENERIC_DOC,
            recipients=[BOB, CAROL],
        )

        f = self.get_failure(self.dispatcher.delete_object(intent), RecipientErrors)

        (failure,) = f.value.failures
        self.assertEqual(failure.recipient, CAROL)
        self.assertIsInstance(failure.cause, NotFoundAtRecipientError)

        (request,) = self.recipients.requests_to(BOB)
        self.assertEqual(request.args, {"rev": "3-remote"})

    def test_drop_references(self) -> None:
        intent = file_intent([BOB, CAROL], scope=ALBUM_SCOPE)

        self.get_success(self.dispatcher.drop_sharing_references(intent))

        self.assertEqual(len(self.recipients.requests), 2)
        for request in self.recipients.requests:
            self.assertEqual(request.method, "DELETE")
            self.assertTrue(
                request.uri.endswith("/sharings/files/photo/referenced_by")
            )
            self.assertEqual(request.body, {"data": [ALBUM.to_json()]})

    def test_drop_references_of_listing_sharing(self) -> None:
        intent = file_intent([BOB], scope=SharingScope(values=["photo"]))

        self.get_failure(
            self.dispatcher.drop_sharing_references(intent), InvalidSharingTargetError
        )
        self.assertEqual(self.recipients.requests, [])

    def test_dispatch(self) -> None:
        self.recipients.documents[self.file_uri(BOB)] = remote_file(PHOTO)

        self.get_success(self.dispatcher.dispatch(file_intent([BOB]), "deleted"))
        self.assertEqual(self.recipients.requests[0].method, "DELETE")

        self.get_failure(
            self.dispatcher.dispatch(file_intent([BOB]), "moved"), ValueError
        )


class UploadTestCase(unittest.SharingServerTestCase):
    """Uploads the content of a file to several recipients with the real HTTP
    client, reading the request bodies the way twisted.web would."""

    def make_server(self, reactor):
        self.file_store = FakeFileStore(content=b"some content")
        return self.setup_test_server(
            file_store=self.file_store, document_store=Mock()
        )

    def prepare(self, reactor, server):
        self.dispatcher = server.get_sharing_dispatcher()
        self.file_store.add(PHOTO)
        self.bodies: List[Tuple[str, bytes]] = []

        patcher = patch(
            "sharedata.http.client.treq.request", side_effect=self._treq_request
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _treq_request(
        self, method, uri, agent=None, data=None, headers=None, unbuffered=False
    ) -> "defer.Deferred[FakeResponse]":
        if data is None:
            return defer.succeed(FakeResponse(code=404))

        consumer = io.BytesIO()

        def _done(_: object) -> FakeResponse:
            self.bodies.append((uri.split("/")[2], consumer.getvalue()))
            return FakeResponse(code=201)

        return data.startProducing(consumer).addCallback(_done)

    def test_every_recipient_gets_the_whole_content(self) -> None:
        self.get_success(
            self.dispatcher.send_new_object(file_intent([BOB, CAROL, DAVE])),
            by=0.1,
        )

        self.assertCountEqual(
            self.bodies,
            [
                (BOB.url, b"some content"),
                (CAROL.url, b"some content"),
                (DAVE.url, b"some content"),
            ],
        )
        (stream,) = self.file_store.opened
        self.assertEqual(stream.close_count, 1)
