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
from typing import Any, Callable, List, Set, TypeVar

from twisted.internet import defer
from twisted.internet.defer import CancelledError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def cancellable(function: F) -> F:
    """Marks a function as cancellable.

    A cancellable function may have the `Deferred` wrapping it cancelled (or
    the `CancellationSignal` passed to it fired) at any `await`. The
    cancellation propagates down to the `Deferred` currently being waited on,
    which raises a `CancelledError`, which propagates up as per normal exception
    handling.

    Before applying this decorator to a new function, you MUST recursively check
    that all `await`s in the function are on `async` functions or `Deferred`s that
    handle cancellation cleanly, and that the function never turns a
    `CancelledError` into some other error or result.

    Usage:
        class SomeHandler:
            @cancellable
            async def fetch_something(self, ...) -> ...:
                ...
    """

    function.cancellable = True  # type: ignore[attr-defined]
    return function


def is_function_cancellable(function: Callable[..., Any]) -> bool:
    """Checks whether a function has the `@cancellable` flag."""
    return getattr(function, "cancellable", False)


class CancellationSignal:
    """A request-scoped signal used to abort outstanding upstream calls.

    One signal is created when a request arrives and is passed down to every
    call made on behalf of that request. Anything waiting on the network
    registers its `Deferred` with `watch`; calling `fire` cancels all of them,
    so that the waiting code sees a `CancelledError`.

    Signals can have children (see `child`), which are fired along with their
    parent but can also be fired on their own, eg to abandon one branch of a
    fan-out without affecting the others.
    """

    def __init__(self) -> None:
        self._fired = False
        self._pending: Set["defer.Deferred[Any]"] = set()
        self._children: List["CancellationSignal"] = []

    @property
    def fired(self) -> bool:
        return self._fired

    def fire(self) -> None:
        """Cancel everything that is watching this signal (and its children).

        Firing a signal more than once is harmless.
        """
        if self._fired:
            return
        self._fired = True

        logger.debug("Cancelling %d outstanding calls", len(self._pending))
        for d in list(self._pending):
            d.cancel()
        self._pending.clear()

        for child in self._children:
            child.fire()

    def raise_if_fired(self) -> None:
        """Raise a CancelledError if the signal has already fired."""
        if self._fired:
            raise CancelledError()

    def watch(self, d: "defer.Deferred[Any]") -> "defer.Deferred[Any]":
        """Arrange for the given Deferred to be cancelled when the signal fires.

        If the signal has already fired, the Deferred is cancelled immediately.

        Returns:
            The same Deferred, for convenience.
        """
        if self._fired:
            d.cancel()
            return d

        self._pending.add(d)

        def _unwatch(res: Any) -> Any:
            self._pending.discard(d)
            return res

        d.addBoth(_unwatch)
        return d

    def child(self) -> "CancellationSignal":
        """Create a new signal which fires whenever this one does."""
        child = CancellationSignal()
        if self._fired:
            child.fire()
        else:
            self._children.append(child)
        return child
