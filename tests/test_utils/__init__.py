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

"""
Utilities for running the unit tests
"""
import io
import json
import sys
import warnings
from typing import Any, BinaryIO, Callable, Dict, List, Tuple
from unittest.mock import Mock

import attr
import zope.interface

from twisted.python.failure import Failure
from twisted.web.client import ResponseDone
from twisted.web.http import RESPONSES
from twisted.web.http_headers import Headers
from twisted.web.iweb import IResponse

from sharedata.sharing.types import FileMeta


def setup_awaitable_errors() -> Callable[[], None]:
    """
    Convert warnings from a non-awaited coroutines into errors.
    """
    warnings.simplefilter("error", RuntimeWarning)

    # State shared between unraisablehook and check_for_unraisable_exceptions.
    unraisable_exceptions = []
    orig_unraisablehook = sys.unraisablehook

    def unraisablehook(unraisable):
        unraisable_exceptions.append(unraisable.exc_value)

    def cleanup():
        """
        A method to be used as a clean-up that fails a test-case if there are any
        new unraisable exceptions.
        """
        sys.unraisablehook = orig_unraisablehook
        if unraisable_exceptions:
            raise unraisable_exceptions.pop()

    sys.unraisablehook = unraisablehook

    return cleanup


def simple_async_mock(return_value=None, raises=None) -> Mock:
    # mimics the part of AsyncMock's behaviour the tests need, with coroutines
    # which can be driven by Twisted
    async def cb(*args, **kwargs):
        if raises:
            raise raises
        return return_value

    return Mock(side_effect=cb)


# Type ignore: it does not fully implement IResponse, but is good enough for tests
@zope.interface.implementer(IResponse)
@attr.s(slots=True, frozen=True, auto_attribs=True)
class FakeResponse:  # type: ignore[misc]
    """A fake twisted.web.IResponse object"""

    version: Tuple[bytes, int, int] = (b"HTTP", 1, 1)

    # HTTP response code
    code: int = 200

    # body of the response
    body: bytes = b""

    headers: Headers = attr.Factory(Headers)

    @property
    def phrase(self):
        return RESPONSES.get(self.code, b"Unknown Status")

    @property
    def length(self):
        return len(self.body)

    def deliverBody(self, protocol):
        protocol.dataReceived(self.body)
        protocol.connectionLost(Failure(ResponseDone()))

    @classmethod
    def json(cls, *, code: int = 200, payload: Any) -> "FakeResponse":
        headers = Headers({"Content-Type": ["application/json"]})
        body = json.dumps(payload).encode("utf-8")
        return cls(code=code, body=body, headers=headers)


class TrackingBytesIO(io.BytesIO):
    """A BytesIO which remembers whether it was closed."""

    close_count = 0

    def close(self) -> None:
        self.close_count += 1
        super().close()


class FakeFileStore:
    """A file store holding a fixed set of files and directories in memory.

    Attributes:
        opened: the content streams handed out so far
    """

    def __init__(self, content: bytes = b"some content", fail_open: bool = False):
        self.objects: Dict[str, Any] = {}
        self.content = content
        self.fail_open = fail_open
        self.opened: List[TrackingBytesIO] = []

    def add(self, obj: Any) -> None:
        self.objects[obj.id] = obj

    async def get_dir_or_file(self, file_id: str) -> Any:
        return self.objects.get(file_id)

    def open_content(self, file: FileMeta) -> BinaryIO:
        if self.fail_open:
            raise PermissionError(13, "Permission denied")
        stream = TrackingBytesIO(self.content)
        self.opened.append(stream)
        return stream

