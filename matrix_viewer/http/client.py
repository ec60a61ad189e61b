# Copyright 2023 The Matrix.org Foundation C.I.C.
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
from http import HTTPStatus
from io import BytesIO
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import treq
from canonicaljson import encode_canonical_json
from prometheus_client import Counter

from twisted.internet import defer, error as twisted_error
from twisted.internet.defer import CancelledError
from twisted.internet.interfaces import IDelayedCall, IReactorTime
from twisted.internet.task import Cooperator
from twisted.python.failure import Failure
from twisted.web.client import (
    Agent,
    HTTPConnectionPool,
    ResponseNeverReceived,
    readBody,
)
from twisted.web.http_headers import Headers
from twisted.web.iweb import IAgent, IResponse

from matrix_viewer.api.errors import (
    Codes,
    HttpResponseException,
    UpstreamUnavailableError,
)
from matrix_viewer.http import QuieterFileBodyProducer, redact_uri
from matrix_viewer.util import json_decoder
from matrix_viewer.util.async_helpers import timeout_deferred
from matrix_viewer.util.cancellation import CancellationSignal, cancellable

logger = logging.getLogger(__name__)

outgoing_requests_counter = Counter(
    "matrix_viewer_http_client_requests", "", ["method"]
)
incoming_responses_counter = Counter(
    "matrix_viewer_http_client_responses", "", ["method", "code"]
)

# The query arguments accepted by `fetch_json`: a mapping of string to string or
# list of strings.
QueryParams = Mapping[str, Union[str, List[str]]]

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


def _make_cancellable(d: "defer.Deferred[Any]") -> "defer.Deferred[Any]":
    """Wrap a Deferred so that cancelling the wrapper always fails it with a
    CancelledError.

    Cancelling a request inside the Agent can fail its Deferred with a variety of
    errors (`ConnectingCancelledError`, `ResponseNeverReceived`, ...), which look
    just like the network failing. When the caller is the one who cancelled, we
    want them to see a CancelledError instead.
    """
    cancelled = [False]

    def _canceller(_: "defer.Deferred[Any]") -> None:
        cancelled[0] = True
        d.cancel()

    new_d: "defer.Deferred[Any]" = defer.Deferred(_canceller)

    def _success(res: Any) -> None:
        if not new_d.called:
            new_d.callback(res)

    def _failure(f: Failure) -> None:
        if new_d.called:
            return
        if cancelled[0] and not f.check(CancelledError):
            new_d.errback(Failure(CancelledError()))
        else:
            new_d.errback(f)

    d.addCallbacks(_success, _failure)
    return new_d


def _timeout_to_upstream_error(f: Failure) -> Failure:
    if f.check(twisted_error.TimeoutError, twisted_error.ConnectingCancelledError):
        # The TCP connection has its own timeout (set by the 'connectTimeout' param
        # on the Agent), which raises twisted_error.TimeoutError exception.
        raise UpstreamUnavailableError(
            "Timeout connecting to the homeserver", code=HTTPStatus.GATEWAY_TIMEOUT
        )
    elif f.check(defer.TimeoutError, ResponseNeverReceived):
        # this one means that we hit our overall timeout on the request
        raise UpstreamUnavailableError(
            "Timeout waiting for response from the homeserver",
            code=HTTPStatus.GATEWAY_TIMEOUT,
        )

    return f


class ViewerHttpClient:
    """
    A simple, no-frills HTTP client for talking JSON to the homeserver.

    Every request the gateway makes goes through `fetch_json`, which takes care
    of authentication, timeouts, cancellation, metrics and logging.
    """

    def __init__(
        self,
        reactor: IReactorTime,
        user_agent: str,
        request_timeout: float = 60,
        agent: Optional[IAgent] = None,
        treq_args: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            reactor: The twisted reactor to use.
            user_agent: The User-Agent to send with requests.
            request_timeout: How long to wait for the response headers, in
                seconds.
            agent: The Agent to make requests with. Defaults to a plain Agent
                with a persistent connection pool.
            treq_args: Extra keyword arguments to be given to treq.request.
        """
        self.reactor = reactor
        self.user_agent = user_agent.encode("ascii")
        self._request_timeout = request_timeout
        self._extra_treq_args = treq_args or {}

        # We use this for our body producers to ensure that they use the correct
        # reactor.
        self._cooperator = Cooperator(scheduler=_make_scheduler(reactor))

        if agent is None:
            pool = HTTPConnectionPool(reactor)
            pool.maxPersistentPerHost = 10
            pool.cachedConnectionTimeout = 2 * 60
            agent = Agent(reactor, connectTimeout=15, pool=pool)
        self.agent = agent

    async def request(
        self,
        method: str,
        uri: str,
        data: Optional[bytes] = None,
        headers: Optional[Headers] = None,
        cancellation: Optional[CancellationSignal] = None,
    ) -> IResponse:
        """
        Args:
            method: HTTP method to use.
            uri: URI to query.
            data: Data to send in the request body, if applicable.
            headers: Request headers.
            cancellation: aborts the request when fired.

        Returns:
            Response object, once the headers have been read.

        Raises:
            UpstreamUnavailableError if the request times out before the headers
                are read
            CancelledError if the request was cancelled
        """
        outgoing_requests_counter.labels(method).inc()

        # log request but strip `access_token`
        logger.debug("Sending request %s %s", method, redact_uri(uri))

        try:
            body_producer = None
            if data is not None:
                body_producer = QuieterFileBodyProducer(
                    BytesIO(data),
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
                self._request_timeout,
                self.reactor,
            )
            request_deferred = _make_cancellable(request_deferred)
            if cancellation is not None:
                cancellation.watch(request_deferred)

            # turn timeouts into UpstreamUnavailableErrors
            request_deferred.addErrback(_timeout_to_upstream_error)

            response = await request_deferred

            incoming_responses_counter.labels(method, response.code).inc()
            logger.info(
                "Received response to %s %s: %s",
                method,
                redact_uri(uri),
                response.code,
            )
            return response
        except CancelledError:
            incoming_responses_counter.labels(method, "CANCELLED").inc()
            logger.debug("Request %s %s was cancelled", method, redact_uri(uri))
            raise
        except Exception as e:
            incoming_responses_counter.labels(method, "ERR").inc()
            logger.info(
                "Error sending request to  %s %s: %s %s",
                method,
                redact_uri(uri),
                type(e).__name__,
                e,
            )
            raise

    async def _read_body(
        self, response: IResponse, cancellation: Optional[CancellationSignal]
    ) -> bytes:
        d = _make_cancellable(readBody(response))
        if cancellation is not None:
            cancellation.watch(d)
        return await d

    @cancellable
    async def fetch_json(
        self,
        uri: str,
        access_token: Optional[str] = None,
        cancellation: Optional[CancellationSignal] = None,
        method: str = "GET",
        args: Optional[QueryParams] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """Make a request to the homeserver and parse the JSON it returns.

        Args:
            uri: The URI to request, not including query parameters
            access_token: sent as a bearer token, if given
            cancellation: aborts the request when fired
            method: HTTP method to use
            args: A dictionary used to create the query string
            json_body: if given, encoded as JSON and sent as the request body

        Returns:
            The parsed JSON body of a 2xx response.

        Raises:
            UpstreamUnavailableError: if the request could not be made, timed
                out, got a non-2xx response, or the response was not JSON.
            CancelledError: if the request was cancelled.
        """
        if cancellation is not None:
            cancellation.raise_if_fired()

        if args:
            query_str = urllib.parse.urlencode(args, True)
            uri = "%s?%s" % (uri, query_str)

        actual_headers = {
            b"User-Agent": [self.user_agent],
            b"Accept": [b"application/json"],
        }
        if access_token:
            actual_headers[b"Authorization"] = [
                b"Bearer %s" % (access_token.encode("ascii"),)
            ]

        data = None
        if json_body is not None:
            data = encode_canonical_json(json_body)
            actual_headers[b"Content-Type"] = [b"application/json"]

        try:
            response = await self.request(
                method,
                uri,
                headers=Headers(actual_headers),
                data=data,
                cancellation=cancellation,
            )
            body = await self._read_body(response, cancellation)
        except (CancelledError, UpstreamUnavailableError):
            raise
        except Exception as e:
            raise UpstreamUnavailableError(
                "Failed to contact the homeserver: %s: %s" % (type(e).__name__, e)
            ) from e

        if not 200 <= response.code < 300:
            raise HttpResponseException(
                response.code, response.phrase.decode("ascii", errors="replace"), body
            ).to_upstream_error()

        try:
            return json_decoder.decode(body.decode("utf-8"))
        except ValueError as e:
            raise UpstreamUnavailableError(
                "The homeserver returned a response that was not JSON",
                errcode=Codes.NOT_JSON,
            ) from e
