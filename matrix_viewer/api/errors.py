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

"""Contains exceptions and error codes."""

import logging
from enum import Enum
from http import HTTPStatus
from typing import Optional, Union

from twisted.internet.defer import CancelledError
from twisted.python.failure import Failure

from matrix_viewer.util import json_decoder

logger = logging.getLogger(__name__)


class Codes(str, Enum):
    """
    The Matrix error codes we produce, or look for in upstream responses.
    """

    UNRECOGNIZED = "M_UNRECOGNIZED"
    NOT_JSON = "M_NOT_JSON"
    UNKNOWN = "M_UNKNOWN"
    NOT_FOUND = "M_NOT_FOUND"
    INVALID_PARAM = "M_INVALID_PARAM"


class ErrorKind(Enum):
    """The broad category of a failure.

    Callers should use this (via `error_kind`) to decide how to handle an error,
    rather than by checking exception classes, so that the distinction between
    e.g. "the client went away" and "the homeserver is down" survives being
    passed around as a value.
    """

    MALFORMED_LINK = "malformed_link"
    INVALID_PARAM = "invalid_param"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class CodeMessageException(RuntimeError):
    """An exception with integer code and message string attributes.

    Attributes:
        code: HTTP error code
        msg: string describing the error
    """

    def __init__(self, code: Union[int, HTTPStatus], msg: str):
        super().__init__("%d: %s" % (code, msg))

        # HTTPStatus has magic __str__ methods which emit `HTTPStatus.NOT_FOUND`
        # instead of `404`, so convert to a plain integer for our log lines.
        self.code = int(code)
        self.msg = msg


class ViewerError(CodeMessageException):
    """A base exception type for the errors the gateway reports, which have an
    errcode, a message, an HTTP status code and an `ErrorKind`.

    Attributes:
        errcode: Matrix error code e.g 'M_NOT_FOUND'
        kind: the category of the error
    """

    kind = ErrorKind.UNKNOWN

    def __init__(self, code: int, msg: str, errcode: str = Codes.UNKNOWN):
        super().__init__(code, msg)
        self.errcode = errcode


class MalformedLinkError(ViewerError):
    """The string given to the permalink parser was not a permalink at all."""

    kind = ErrorKind.MALFORMED_LINK

    def __init__(self, msg: str = "Does not appear to be a permalink"):
        super().__init__(HTTPStatus.BAD_REQUEST, msg, Codes.UNRECOGNIZED)


class InvalidParamError(ViewerError):
    """A caller gave us a parameter we cannot use."""

    kind = ErrorKind.INVALID_PARAM

    def __init__(self, msg: str):
        super().__init__(HTTPStatus.BAD_REQUEST, msg, Codes.INVALID_PARAM)


class NotFoundError(ViewerError):
    """The room or event does not exist, or we are not allowed to see it."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, msg: str = "Not found", errcode: str = Codes.NOT_FOUND):
        super().__init__(HTTPStatus.NOT_FOUND, msg, errcode=errcode)


class UpstreamUnavailableError(ViewerError):
    """We could not get a usable answer from the homeserver.

    This covers network failures, timeouts and non-2xx responses. It is
    transient: the caller may retry with backoff.
    """

    kind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(
        self,
        msg: str,
        code: int = HTTPStatus.BAD_GATEWAY,
        errcode: str = Codes.UNKNOWN,
    ):
        super().__init__(code, msg, errcode)


class WindowSizeError(ValueError):
    """A caller asked for more events than the homeserver will ever return.

    This is a programming error, so it is deliberately not a `ViewerError`.
    """


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

    def to_upstream_error(self) -> UpstreamUnavailableError:
        """Make an UpstreamUnavailableError based on an HttpResponseException

        An attempt is made to parse the body of the http response as a matrix
        error. If that succeeds, the errcode and error message from the body
        are used as the errcode and error message in the new error.

        Otherwise, the errcode is set to M_UNKNOWN, and the error message is
        set to the reason code from the HTTP response.
        """
        # try to parse the body as json, to get better errcode/msg, but
        # default to M_UNKNOWN with the HTTP status as the error text
        try:
            j = json_decoder.decode(self.response.decode("utf-8"))
        except ValueError:
            j = {}

        if not isinstance(j, dict):
            j = {}

        errcode = j.get("errcode", Codes.UNKNOWN)
        errmsg = j.get("error", self.msg)

        return UpstreamUnavailableError(errmsg, code=self.code, errcode=errcode)


def error_kind(e: Union[BaseException, Failure, None]) -> Optional[ErrorKind]:
    """Classify an exception (or a Failure wrapping one).

    Returns:
        None if there was no error, otherwise the kind of error.
    """
    if e is None:
        return None
    if isinstance(e, Failure):
        e = e.value
    if isinstance(e, CancelledError):
        return ErrorKind.CANCELLED
    if isinstance(e, ViewerError):
        return e.kind
    return ErrorKind.UNKNOWN
