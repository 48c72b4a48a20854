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
import urllib.parse
from io import BytesIO
from typing import (
    TYPE_CHECKING,
    Any,
    BinaryIO,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import treq
from canonicaljson import encode_canonical_json
from prometheus_client import Counter

from twisted.internet import defer, error as twisted_error
from twisted.internet.interfaces import IDelayedCall, IReactorTime
from twisted.internet.task import Cooperator
from twisted.python.failure import Failure
from twisted.web.client import (
    Agent,
    HTTPConnectionPool,
    PartialDownloadError,
    ResponseFailed,
    ResponseNeverReceived,
    readBody,
)
from twisted.web.http_headers import Headers
from twisted.web.iweb import IAgent, IResponse

from sharedata import __version__
from sharedata.api.constants import JSON_CONTENT_TYPE
from sharedata.api.errors import (
    HttpResponseException,
    RequestSendFailed,
    RequestTimedOutError,
)
from sharedata.http import QuieterFileBodyProducer, redact_uri
from sharedata.util import json_decoder
from sharedata.util.async_helpers import timeout_deferred

if TYPE_CHECKING:
    from sharedata.server import SharingServer

logger = logging.getLogger(__name__)

outgoing_requests_counter = Counter(
    "sharedata_http_client_requests", "", ["method"]
)
incoming_responses_counter = Counter(
    "sharedata_http_client_responses", "", ["method", "code"]
)

# the type of the headers map, to be passed to the t.w.h.Headers.
#
# A header value must be a list: a standalone str would be read as a sequence
# of 1-codepoint strings.
RawHeaders = Mapping[str, List[str]]

# the type of the query parameters: a mapping from a name to a value, or to a
# sequence of values for repeated parameters.
QueryArgs = Mapping[str, Union[str, Sequence[str]]]

_EPSILON = 0.00000001


def _make_scheduler(
    reactor: IReactorTime,
) -> Callable[[Callable[[], object]], IDelayedCall]:
    """Makes a schedular suitable for a Cooperator using the given reactor.

    (This is effectively just a copy from `twisted.internet.task`)
    """

    def _scheduler(x: Callable[[], object]) -> IDelayedCall:
        return reactor.callLater(_EPSILON, x)

    return _scheduler


class HttpClient:
    """
    A simple HTTP client used to talk to the recipients of a sharing.

    Every request is bounded by `transport.client_timeout`. Non-2xx responses
    are raised as HttpResponseException, failures to talk to the remote node
    at all as RequestSendFailed.
    """

    def __init__(
        self,
        server: "SharingServer",
        treq_args: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            server
            treq_args: Extra keyword arguments to be given to treq.request.
        """
        self.server = server
        self.reactor = server.get_reactor()
        self._extra_treq_args = treq_args or {}

        transport_config = server.config.transport
        self._timeout = transport_config.client_timeout

        user_agent = "sharedata/%s" % (__version__,)
        if transport_config.user_agent_suffix:
            user_agent = "%s %s" % (user_agent, transport_config.user_agent_suffix)
        self.user_agent = user_agent

        # We use this for our body producers to ensure that they use the correct
        # reactor.
        self._cooperator = Cooperator(scheduler=_make_scheduler(self.reactor))

        # a sharing talks to the same few recipients over and over, so keep
        # some idle connections around.
        pool = HTTPConnectionPool(self.reactor)
        pool.maxPersistentPerHost = max(
            server.config.sharing.max_concurrent_recipients, 5
        )
        pool.cachedConnectionTimeout = 2 * 60

        self.agent: IAgent = Agent(self.reactor, connectTimeout=15, pool=pool)

    async def request(
        self,
        method: str,
        uri: str,
        data: Optional[Union[bytes, BinaryIO]] = None,
        headers: Optional[Headers] = None,
    ) -> IResponse:
        """
        Args:
            method: HTTP method to use.
            uri: URI to query.
            data: Data to send in the request body, if applicable. A file
                object is streamed from its current position.
            headers: Request headers.

        Returns:
            Response object, once the headers have been read.

        Raises:
            RequestTimedOutError if the request times out before the headers are read
            RequestSendFailed if the remote node could not be reached
        """
        outgoing_requests_counter.labels(method).inc()

        # log request but strip `access_token`
        logger.debug("Sending request %s %s", method, redact_uri(uri))

        try:
            body_producer = None
            if data is not None:
                if isinstance(data, bytes):
                    data = BytesIO(data)
                body_producer = QuieterFileBodyProducer(
                    data,
                    cooperator=self._cooperator,
                )

            request_deferred: defer.Deferred = treq.request(
                method,
                uri,
                agent=self.agent,
                data=body_producer,
                headers=headers,
                # Avoid buffering the body in treq since we do not reuse
                # response bodies.
                unbuffered=True,
                **self._extra_treq_args,
            )

            # we use our own timeout mechanism rather than treq's as a workaround
            # for https://twistedmatrix.com/trac/ticket/9534.
            request_deferred = timeout_deferred(
                request_deferred,
                self._timeout,
                self.reactor,
            )

            # turn timeouts into RequestTimedOutErrors
            request_deferred.addErrback(_timeout_to_request_timed_out_error)

            try:
                response = await request_deferred
            except RequestSendFailed:
                raise
            except Exception as e:
                raise RequestSendFailed(e, can_retry=True) from e

            incoming_responses_counter.labels(method, response.code).inc()
            logger.info(
                "Received response to %s %s: %s",
                method,
                redact_uri(uri),
                response.code,
            )
            return response
        except Exception as e:
            incoming_responses_counter.labels(method, "ERR").inc()
            logger.info(
                "Error sending request to %s %s: %s %s",
                method,
                redact_uri(uri),
                type(e).__name__,
                e,
            )
            raise

    async def send(
        self,
        method: str,
        uri: str,
        args: Optional[QueryArgs] = None,
        headers: Optional[RawHeaders] = None,
        body: Optional[Union[bytes, BinaryIO]] = None,
    ) -> bytes:
        """Sends a request and reads the whole response.

        Args:
            method: HTTP method to use.
            uri: The URI to request, not including query parameters
            args: A dictionary used to create the query string
            headers: a map from header name to a list of values for that header
            body: the request body, if any

        Returns:
            Succeeds when we get a 2xx HTTP response, with the HTTP body as bytes.

        Raises:
            RequestSendFailed: if there is a timeout before the response headers
               are received, or the response could not be read.

            HttpResponseException: On a non-2xx HTTP response.
        """
        if args:
            uri = "%s?%s" % (uri, encode_query_args(args))

        actual_headers = {"User-Agent": [self.user_agent]}
        if headers:
            actual_headers.update(headers)

        response = await self.request(
            method, uri, data=body, headers=Headers(actual_headers)
        )

        try:
            resp_body = await readBody(response)
        except PartialDownloadError as e:
            # the remote did not say how long the body is: what we got is all
            # there is.
            resp_body = e.response
        except (ResponseFailed, defer.TimeoutError) as e:
            logger.warning(
                "Failed to read response to %s %s: %s", method, redact_uri(uri), e
            )
            raise RequestSendFailed(e, can_retry=True) from e

        if 200 <= response.code < 300:
            return resp_body
        else:
            raise HttpResponseException(
                response.code,
                response.phrase.decode("ascii", errors="replace"),
                resp_body,
            )

    async def send_json(
        self,
        method: str,
        uri: str,
        json_body: Any,
        args: Optional[QueryArgs] = None,
        headers: Optional[RawHeaders] = None,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> bytes:
        """Sends some json to the given URI.

        Args:
            method: HTTP method to use.
            uri: The URI to request, not including query parameters
            json_body: The JSON to put in the HTTP body
            args: A dictionary used to create the query string
            headers: a map from header name to a list of values for that header
            content_type: the media type the body is sent as

        Returns:
            Succeeds when we get a 2xx HTTP response, with the HTTP body as bytes.

        Raises:
            RequestSendFailed, HttpResponseException: as for `send`
        """
        actual_headers = {
            "Content-Type": [content_type],
            "Accept": [JSON_CONTENT_TYPE],
        }
        if headers:
            actual_headers.update(headers)

        return await self.send(
            method,
            uri,
            args=args,
            headers=actual_headers,
            body=encode_canonical_json(json_body),
        )

    async def get_json(
        self,
        uri: str,
        args: Optional[QueryArgs] = None,
        headers: Optional[RawHeaders] = None,
    ) -> Any:
        """Gets some json from the given URI.

        Args:
            uri: The URI to request, not including query parameters
            args: A dictionary used to create query string
            headers: a map from header name to a list of values for that header
        Returns:
            Succeeds when we get a 2xx HTTP response, with the HTTP body as JSON.
        Raises:
            RequestSendFailed, HttpResponseException: as for `send`

            ValueError: if the response was not JSON
        """
        actual_headers = {"Accept": [JSON_CONTENT_TYPE]}
        if headers:
            actual_headers.update(headers)

        body = await self.send("GET", uri, args, headers=actual_headers)
        return json_decoder.decode(body.decode("utf-8"))


def _timeout_to_request_timed_out_error(f: Failure) -> Failure:
    if f.check(twisted_error.TimeoutError, twisted_error.ConnectingCancelledError):
        # The TCP connection has its own timeout (set by the 'connectTimeout' param
        # on the Agent), which raises twisted_error.TimeoutError exception.
        raise RequestTimedOutError("Timeout connecting to remote server")
    elif f.check(defer.TimeoutError, ResponseNeverReceived):
        # this one means that we hit our overall timeout on the request
        raise RequestTimedOutError("Timeout waiting for response from remote server")

    return f


def encode_query_args(args: QueryArgs) -> str:
    """
    Encodes a map of query arguments so that it can be appended to a URL.

    Parameters are emitted sorted by name, so that a request is always built
    the same way.

    Args:
        args: The query arguments, a mapping of string to string or list of strings.

    Returns:
        The query arguments, url-encoded.
    """
    items: List[Tuple[str, Union[str, Sequence[str]]]] = sorted(args.items())
    return urllib.parse.urlencode(items, True)
