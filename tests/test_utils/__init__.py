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

"""
Utilities for running the unit tests
"""
import json
import sys
import urllib.parse
import warnings
from typing import Any, Callable, Dict, List, Optional, Tuple

import attr
import zope.interface

from twisted.internet import defer
from twisted.python.failure import Failure
from twisted.web.client import ResponseDone
from twisted.web.http import RESPONSES
from twisted.web.http_headers import Headers
from twisted.web.iweb import IResponse

from matrix_viewer.types import JsonDict


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
        Fails the test if any exceptions were raised somewhere they could not be
        propagated, such as in a destructor.
        """
        sys.unraisablehook = orig_unraisablehook
        if unraisable_exceptions:
            raise unraisable_exceptions.pop()

    sys.unraisablehook = unraisablehook

    return cleanup


# Type ignore: it does not fully implement IResponse, but is good enough for tests
@zope.interface.implementer(IResponse)
@attr.s(slots=True, frozen=True, auto_attribs=True)
class FakeResponse:  # type: ignore[misc]
    """A fake twisted.web.IResponse object

    there is a similar class at treq.test.test_response, but it lacks a `phrase`
    attribute, and didn't support deliverBody until recently.
    """

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


def respond_with(*responses: FakeResponse) -> Callable[..., "defer.Deferred[Any]"]:
    """Build a `side_effect` for a mock Agent's `request` which returns the
    given responses in turn, and then keeps returning the last one."""
    remaining = list(responses)

    def _request(*args: Any, **kwargs: Any) -> "defer.Deferred[Any]":
        response = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return defer.succeed(response)

    return _request


@attr.s(slots=True, frozen=True, auto_attribs=True)
class RecordedRequest:
    """A request made to a mock Agent, picked apart so that tests can check it.

    Attributes:
        method: the HTTP method
        host: the host the request was sent to
        path: the path, with any %-escapes decoded
        args: the query parameters
        headers: the request headers
        body: the request body, if there was one
    """

    method: bytes
    host: str
    path: str
    args: Dict[str, List[str]]
    headers: Headers
    body: Optional[bytes]

    @classmethod
    def from_call(cls, call: Any) -> "RecordedRequest":
        args, kwargs = call

        def _arg(index: int, name: str) -> Any:
            if name in kwargs:
                return kwargs[name]
            return args[index] if len(args) > index else None

        uri = _arg(1, "uri")
        if isinstance(uri, bytes):
            uri = uri.decode("ascii")
        parts = urllib.parse.urlsplit(uri)

        body = None
        body_producer = _arg(3, "bodyProducer")
        if body_producer is not None:
            # a FileBodyProducer over a BytesIO
            body = body_producer._inputFile.getvalue()

        return cls(
            method=_arg(0, "method"),
            host=parts.netloc,
            path=urllib.parse.unquote(parts.path),
            args=urllib.parse.parse_qs(parts.query),
            headers=_arg(2, "headers") or Headers(),
            body=body,
        )

    def json_body(self) -> JsonDict:
        assert self.body is not None
        return json.loads(self.body)
