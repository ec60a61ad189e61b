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
from typing import List

from twisted.internet import defer
from twisted.internet.defer import CancelledError, Deferred
from twisted.internet.task import Clock

from matrix_viewer.api.errors import (
    ErrorKind,
    NotFoundError,
    UpstreamUnavailableError,
)
from matrix_viewer.util.async_helpers import gather_results_isolated, timeout_deferred

from tests.unittest import TestCase


class TimeoutDeferredTest(TestCase):
    def setUp(self) -> None:
        self.clock = Clock()

    def test_times_out(self) -> None:
        """Basic test case that checks that the original deferred is cancelled and that
        the timing-out deferred is errbacked
        """
        cancelled = [False]

        def canceller(_d: Deferred) -> None:
            cancelled[0] = True

        non_completing_d: Deferred = Deferred(canceller)
        timing_out_d = timeout_deferred(non_completing_d, 1.0, self.clock)

        self.assertNoResult(timing_out_d)
        self.assertFalse(cancelled[0], "deferred was cancelled prematurely")

        self.clock.pump((1.0,))

        self.assertTrue(cancelled[0], "deferred was not cancelled by timeout")
        self.failureResultOf(timing_out_d, defer.TimeoutError)

    def test_times_out_when_canceller_throws(self) -> None:
        """Test that we have successfully worked around
        https://twistedmatrix.com/trac/ticket/9534"""

        def canceller(_d: Deferred) -> None:
            raise Exception("can't cancel this deferred")

        non_completing_d: Deferred = Deferred(canceller)
        timing_out_d = timeout_deferred(non_completing_d, 1.0, self.clock)

        self.assertNoResult(timing_out_d)

        self.clock.pump((1.0,))

        self.failureResultOf(timing_out_d, defer.TimeoutError)

    def test_result_before_timeout(self) -> None:
        d: Deferred = Deferred()
        timing_out_d = timeout_deferred(d, 1.0, self.clock)

        d.callback("result")
        self.assertEqual(self.successResultOf(timing_out_d), "result")

        # the timer is gone
        self.assertEqual(self.clock.getDelayedCalls(), [])

    def test_cancelling_result_cancels_original(self) -> None:
        """Cancelling the returned deferred is a cancellation, not a timeout."""
        cancelled = [False]

        def canceller(_d: Deferred) -> None:
            cancelled[0] = True

        d: Deferred = Deferred(canceller)
        timing_out_d = timeout_deferred(d, 1.0, self.clock)

        timing_out_d.cancel()

        self.assertTrue(cancelled[0])
        self.failureResultOf(timing_out_d, CancelledError)
        self.assertEqual(self.clock.getDelayedCalls(), [])


class GatherResultsIsolatedTest(TestCase):
    def test_isolates_failures(self) -> None:
        blockers = {name: Deferred() for name in ("a", "b", "c")}

        async def fetch(name: str) -> str:
            await blockers[name]
            if name == "b":
                raise UpstreamUnavailableError("b is down")
            if name == "c":
                raise NotFoundError()
            return name.upper()

        d = gather_results_isolated(fetch, ["a", "b", "c"])

        # nothing completes until every task is done
        blockers["a"].callback(None)
        blockers["b"].callback(None)
        self.assertNoResult(d)
        blockers["c"].callback(None)

        outcomes = self.successResultOf(d)
        self.assertEqual([o.ok for o in outcomes], [True, False, False])
        self.assertEqual(outcomes[0].value, "A")
        self.assertEqual(outcomes[1].error, ErrorKind.UPSTREAM_UNAVAILABLE)
        self.assertEqual(outcomes[2].error, ErrorKind.NOT_FOUND)

    def test_unexpected_errors(self) -> None:
        async def fetch(name: str) -> str:
            raise KeyError(name)

        outcomes = self.successResultOf(gather_results_isolated(fetch, ["a"]))
        self.assertEqual(outcomes[0].error, ErrorKind.UNKNOWN)
        self.assertIsNone(outcomes[0].value)

    def test_passes_extra_args(self) -> None:
        async def fetch(name: str, suffix: str, sep: str = "") -> str:
            return name + sep + suffix

        outcomes = self.successResultOf(
            gather_results_isolated(fetch, ["a", "b"], "x", sep="-")
        )
        self.assertEqual([o.value for o in outcomes], ["a-x", "b-x"])

    def test_cancellation_propagates(self) -> None:
        started: List[Deferred] = []

        async def fetch(name: str) -> str:
            d: Deferred = Deferred()
            started.append(d)
            await d
            return name

        d = gather_results_isolated(fetch, ["a", "b"])
        self.assertEqual(len(started), 2)

        # one task being cancelled fails the whole gather
        started[0].cancel()
        self.failureResultOf(d, CancelledError)

        started[1].callback(None)

    def test_cancelling_the_gather(self) -> None:
        started: List[Deferred] = []

        async def fetch(name: str) -> str:
            d: Deferred = Deferred()
            started.append(d)
            await d
            return name

        d = gather_results_isolated(fetch, ["a", "b"])
        d.cancel()

        self.assertEqual(len(started), 2)
        self.failureResultOf(d, CancelledError)

    def test_empty(self) -> None:
        async def fetch(name: str) -> str:
            return name

        self.assertEqual(self.successResultOf(gather_results_isolated(fetch, [])), [])
