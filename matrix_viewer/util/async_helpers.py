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
from typing import Any, Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

import attr

from twisted.internet import defer
from twisted.internet.defer import CancelledError
from twisted.internet.interfaces import IReactorTime
from twisted.python import failure

from matrix_viewer.api.errors import ErrorKind, error_kind
from matrix_viewer.util import unwrapFirstError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def timeout_deferred(
    deferred: "defer.Deferred[T]",
    timeout: float,
    reactor: IReactorTime,
) -> "defer.Deferred[T]":
    """The in built twisted `Deferred.addTimeout` fails to time out deferreds
    that have a canceller that throws exceptions. This method creates a new
    deferred that wraps and times out the given deferred, correctly handling
    the case where the given deferred's canceller throws.

    (See https://twistedmatrix.com/trac/ticket/9534)

    NOTE: Unlike `Deferred.addTimeout`, this function returns a new deferred.

    NOTE: the TimeoutError raised by the resultant deferred is
    twisted.internet.defer.TimeoutError, which is *different* to the built-in
    TimeoutError, as well as various other TimeoutErrors you might have imported.

    Cancelling the returned deferred cancels the given one.

    Args:
        deferred: The Deferred to potentially timeout.
        timeout: Timeout in seconds
        reactor: The twisted reactor to use


    Returns:
        A new Deferred, which will errback with defer.TimeoutError on timeout.
    """
    new_d: "defer.Deferred[T]" = defer.Deferred(lambda _: deferred.cancel())

    timed_out = [False]

    def time_it_out() -> None:
        timed_out[0] = True

        try:
            deferred.cancel()
        except Exception:  # if we throw any exception it'll break time outs
            logger.exception("Canceller failed during timeout")

        # the cancel() call should have set off a chain of errbacks which
        # will have errbacked new_d, but in case it hasn't, errback it now.

        if not new_d.called:
            new_d.errback(defer.TimeoutError("Timed out after %gs" % (timeout,)))

    delayed_call = reactor.callLater(timeout, time_it_out)

    def convert_cancelled(value: failure.Failure) -> failure.Failure:
        # if the original deferred was cancelled, and our timeout has fired, then
        # the reason it was cancelled was due to our timeout. Turn the CancelledError
        # into a TimeoutError.
        if timed_out[0] and value.check(CancelledError):
            raise defer.TimeoutError("Timed out after %gs" % (timeout,))
        return value

    deferred.addErrback(convert_cancelled)

    def cancel_timeout(result: Any) -> Any:
        # stop the pending call to cancel the deferred if it's been fired
        if delayed_call.active():
            delayed_call.cancel()
        return result

    deferred.addBoth(cancel_timeout)

    def success_cb(val: T) -> None:
        if not new_d.called:
            new_d.callback(val)

    def failure_cb(val: failure.Failure) -> None:
        if not new_d.called:
            new_d.errback(val)

    deferred.addCallbacks(success_cb, failure_cb)

    return new_d


@attr.s(slots=True, frozen=True, auto_attribs=True)
class Outcome(Generic[T]):
    """The result of one task in a fan-out: either a value, or the kind of
    error the task failed with (and a description of it).
    """

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def gather_results_isolated(
    func: Callable[..., Awaitable[R]], iter: Iterable[Any], *args: Any, **kwargs: Any
) -> "defer.Deferred[List[Outcome[R]]]":
    """Executes the function with each argument concurrently, isolating
    failures.

    Unlike a plain `gatherResults`, one call failing does not fail the rest:
    every call runs to completion and its result (or the kind of error it
    raised) is reported in the corresponding `Outcome`. The only exception is
    cancellation, which is never treated as a per-task failure: if any call is
    cancelled, the returned Deferred fails with `CancelledError`.

    Args:
        func: async function to execute
        iter: An iterable that yields items that get passed as the first
            argument to the function
        *args: Arguments to be passed to each call to func
        **kwargs: Keyword arguments to be passed to each call to func

    Returns
        Deferred[list]: the outcomes, in the same order as `iter`.
    """

    async def _run_isolated(item: Any) -> Outcome[R]:
        try:
            value = await func(item, *args, **kwargs)
        except CancelledError:
            raise
        except Exception as e:
            kind = error_kind(e)
            if kind == ErrorKind.UNKNOWN:
                logger.exception("Unexpected error in fan-out task for %r", item)
            else:
                logger.info("Fan-out task for %r failed: %s", item, e)
            return Outcome(error=kind, error_message=str(e))
        return Outcome(value=value)

    return defer.gatherResults(
        [defer.ensureDeferred(_run_isolated(item)) for item in iter],
        consumeErrors=True,
    ).addErrback(unwrapFirstError)
