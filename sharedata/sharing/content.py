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
from types import TracebackType
from typing import Awaitable, BinaryIO, Callable, Optional, Type, TypeVar, cast

from twisted.internet.defer import DeferredLock

from sharedata.api.errors import ContentOpenFailureError
from sharedata.sharing.types import FileMeta
from sharedata.storage import FileStore
from sharedata.util import format_rfc1123

logger = logging.getLogger(__name__)

R = TypeVar("R")


class _UploadStream:
    """A view of the shared content for one upload.

    Body producers close the file they read once they are done with it. Only
    the LazyFileHandle closes the underlying stream, so `close` here only
    detaches the view.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed upload stream")
        return self._stream.read(size)

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._stream.seek(offset, whence)

    def tell(self) -> int:
        return self._stream.tell()

    def close(self) -> None:
        self.closed = True


class LazyFileHandle:
    """The content of a local file, opened the first time a recipient needs it.

    The content is opened at most once, however many recipients it is sent
    to, and is closed when the handle is used as a context manager and the
    block exits:

        with LazyFileHandle(file_store, file) as handle:
            for recipient in recipients:
                await handle.stream_to(send_to_recipient)

    Uploads are serialised: each one reads the content from the start.
    """

    def __init__(self, file_store: FileStore, file: FileMeta):
        self._file_store = file_store
        self.file = file

        self._stream: Optional[BinaryIO] = None
        self._open_error: Optional[ContentOpenFailureError] = None
        self._closed = False
        self._lock = DeferredLock()

    @property
    def mime(self) -> str:
        return self.file.mime

    @property
    def content_length(self) -> int:
        return self.file.size

    @property
    def md5sum(self) -> str:
        """The base64 encoded MD5 digest of the content."""
        return self.file.md5sum

    @property
    def executable(self) -> bool:
        return self.file.executable

    @property
    def created_at(self) -> str:
        return format_rfc1123(self.file.created_at) if self.file.created_at else ""

    @property
    def updated_at(self) -> str:
        return format_rfc1123(self.file.updated_at) if self.file.updated_at else ""

    @property
    def opened(self) -> bool:
        return self._stream is not None

    def _open(self) -> BinaryIO:
        if self._closed:
            raise RuntimeError("Content of %s was already released" % (self.file.id,))

        # a failed open is not retried: every recipient gets the same error
        if self._open_error is not None:
            raise self._open_error

        if self._stream is None:
            try:
                self._stream = self._file_store.open_content(self.file)
            except OSError as e:
                self._open_error = ContentOpenFailureError(
                    "Could not open the content of %s: %s" % (self.file.id, e)
                )
                raise self._open_error from e
            logger.debug("Opened content of %s", self.file.id)

        return self._stream

    async def stream_to(self, send: Callable[[BinaryIO], Awaitable[R]]) -> R:
        """Hands the content, read from its start, to `send`.

        `send` may close what it is given: the content stays open for the
        next upload until the handle itself is closed.

        Raises:
            ContentOpenFailureError: if the content could not be opened
        """
        await self._lock.acquire()
        try:
            stream = self._open()
            stream.seek(0)
            return await send(cast(BinaryIO, _UploadStream(stream)))
        finally:
            self._lock.release()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._stream is not None:
            logger.debug("Closing content of %s", self.file.id)
            self._stream.close()
            self._stream = None

    def __enter__(self) -> "LazyFileHandle":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()
