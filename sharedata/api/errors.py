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

"""Contains exceptions and error kinds."""

import typing
from enum import Enum
from http import HTTPStatus
from typing import List, Sequence, Union

if typing.TYPE_CHECKING:
    from sharedata.sharing.types import Recipient


class ErrorKind(str, Enum):
    """The ways a request to a recipient can fail, as decided by the transport."""

    NOT_FOUND = "not_found"
    HTTP = "http"
    NETWORK = "network"


class SharingError(Exception):
    """Base class for all the errors raised while replicating an object."""


class TransportError(SharingError):
    """A request to a recipient failed.

    Attributes:
        kind: why the request failed. Callers match on this rather than on the
            error message or the exact exception type.
    """

    kind: ErrorKind


class CodeMessageException(TransportError):
    """An exception with integer code and message string attributes.

    Attributes:
        code: HTTP error code
        msg: string describing the error
    """

    def __init__(self, code: Union[int, HTTPStatus], msg: str):
        super().__init__("%d: %s" % (code, msg))

        # HTTPStatus has magic __str__ methods which emit `HTTPStatus.NOT_FOUND`
        # when converted to a str, instead of `404`: store the plain integer.
        self.code = int(code)
        self.msg = msg


class HttpResponseException(CodeMessageException):
    """
    Represents an HTTP-level failure of an outbound request

    Attributes:
        response: body of response
    """

    def __init__(self, code: int, msg: str, response: bytes):
        """

        Args:
            code: HTTP status code
            msg: reason phrase from HTTP response status line
            response: body of response
        """
        super().__init__(code, msg)
        self.response = response
        if self.code == HTTPStatus.NOT_FOUND:
            self.kind = ErrorKind.NOT_FOUND
        else:
            self.kind = ErrorKind.HTTP


class RequestSendFailed(TransportError):
    """Sending a HTTP request to a recipient failed due to not being able to
    talk to the remote node for some reason.

    This exception is used to differentiate "expected" errors that arise due to
    networking (e.g. DNS failures, connection timeouts etc), versus unexpected
    errors (like programming errors).
    """

    kind = ErrorKind.NETWORK

    def __init__(self, inner_exception: BaseException, can_retry: bool):
        super().__init__(
            "Failed to send request: %s: %s"
            % (type(inner_exception).__name__, inner_exception)
        )
        self.inner_exception = inner_exception
        self.can_retry = can_retry


class RequestTimedOutError(RequestSendFailed):
    """Exception representing timeout of an outbound request"""

    def __init__(self, msg: str):
        super().__init__(TimeoutError(msg), can_retry=True)


class NotFoundError(SharingError):
    """The object to replicate could not be found in the local stores."""


class NotFoundAtRecipientError(SharingError):
    """The recipient does not have the object an operation needs to exist there."""


class MalformedRemoteResponseError(SharingError):
    """The recipient returned an object which could not be understood."""


class InvalidSharingTargetError(SharingError):
    """The object cannot be replicated with this sharing at all, eg the root
    directory of a listing-based sharing."""


class ContentOpenFailureError(SharingError):
    """The content of the local file could not be opened."""


class InvalidLocalObjectError(SharingError):
    """A local document, file or directory could not be read from its store."""


class RecipientFailure(SharingError):
    """An operation failed for one recipient.

    Attributes:
        recipient: the recipient the operation failed for
        operation: the name of the dispatcher operation
        cause: the underlying error
    """

    def __init__(self, recipient: "Recipient", operation: str, cause: BaseException):
        super().__init__("%s failed for %s: %s" % (operation, recipient.url, cause))
        self.recipient = recipient
        self.operation = operation
        self.cause = cause


class RecipientErrors(SharingError):
    """One or more recipients could not be brought up to date.

    Attributes:
        failures: one entry per recipient that failed, in the order the failures
            happened
        attempted: how many recipients the operation was attempted for
    """

    def __init__(self, failures: Sequence[RecipientFailure], attempted: int):
        self.failures: List[RecipientFailure] = list(failures)
        self.attempted = attempted
        super().__init__(
            "%d of %d recipient(s) failed:\n%s"
            % (
                len(self.failures),
                attempted,
                "\n".join("\t* %s" % (f,) for f in self.failures),
            )
        )

    @property
    def all_failed(self) -> bool:
        """Whether no recipient at all was brought up to date."""
        return len(self.failures) >= self.attempted


class InvalidMessageError(SharingError):
    """A sharing job message is not well formed."""
