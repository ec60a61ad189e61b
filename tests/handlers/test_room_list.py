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
from typing import Any, Dict, List, Optional

from parameterized import parameterized

from twisted.internet import defer
from twisted.internet.defer import CancelledError

from matrix_viewer.api.errors import (
    ErrorKind,
    InvalidParamError,
    UpstreamUnavailableError,
)
from matrix_viewer.server import ViewerServer
from matrix_viewer.util.cancellation import CancellationSignal

from tests.test_utils import FakeResponse
from tests.unittest import GatewayTestCase
from tests.utils import TEST_ACCESS_TOKEN, default_config


def _room(room_id: str, name: Optional[str] = None, **kwargs: Any) -> Dict[str, Any]:
    room = {
        "room_id": room_id,
        "name": name,
        "num_joined_members": 10,
        "world_readable": True,
        "guest_can_join": False,
    }
    room.update(kwargs)
    return room


def _directory(rooms: List[Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"chunk": rooms, "total_room_count_estimate": len(rooms)}
    body.update(kwargs)
    return body


class FetchPublicRoomsTestCase(GatewayTestCase):
    def prepare(self, reactor, hs: ViewerServer) -> None:
        self.handler = hs.get_room_list_handler()

    def _fetch(self, **kwargs: Any):
        return defer.ensureDeferred(
            self.handler.fetch_public_rooms(TEST_ACCESS_TOKEN, **kwargs)
        )

    def test_fetch(self) -> None:
        self.respond_with_json(
            _directory(
                [
                    _room("!hq:matrix.org", name="Matrix HQ", guest_can_join=True),
                    _room("!cooking:example.org", topic="Recipes"),
                ],
                next_batch="next",
            )
        )

        chunk = self.successResultOf(self._fetch())

        self.assertEqual(
            [r.room_id for r in chunk.rooms],
            ["!hq:matrix.org", "!cooking:example.org"],
        )
        self.assertEqual(chunk.rooms[0].name, "Matrix HQ")
        self.assertTrue(chunk.rooms[0].guest_can_join)
        self.assertEqual(chunk.rooms[1].topic, "Recipes")
        self.assertEqual(chunk.next_batch, "next")
        self.assertIsNone(chunk.prev_batch)

        (request,) = self.get_requests()
        self.assertEqual(request.method, b"POST")
        self.assertEqual(request.path, "/_matrix/client/v3/publicRooms")
        self.assertEqual(request.args, {})
        self.assertEqual(request.json_body(), {})

    def test_request_body(self) -> None:
        self.respond_with_json(_directory([]))

        self.successResultOf(
            self._fetch(
                server="matrix.org",
                search_term="cooking",
                pagination_token="tok",
                direction="f",
                limit=20,
                room_type="m.space",
            )
        )

        (request,) = self.get_requests()
        self.assertEqual(request.args, {"server": ["matrix.org"]})
        self.assertEqual(
            request.json_body(),
            {
                "limit": 20,
                "since": "tok",
                "filter": {
                    "generic_search_term": "cooking",
                    "room_types": ["m.space"],
                },
            },
        )

    @parameterized.expand(
        [
            ("no_token", None, "f"),
            ("no_direction", "tok", None),
            ("bad_direction", "tok", "sideways"),
        ]
    )
    def test_bad_pagination(
        self, _: str, token: Optional[str], direction: Optional[str]
    ) -> None:
        self.failureResultOf(
            self._fetch(pagination_token=token, direction=direction),
            InvalidParamError,
        )
        self.mock_agent.request.assert_not_called()

    def test_nsfw_rooms_hidden(self) -> None:
        self.respond_with_json(
            _directory(
                [
                    _room("!a:example.org", name="NSFW chat"),
                    _room("!b:example.org", topic="Strictly 18+"),
                    _room("!c:example.org", canonical_alias="#hentai:example.org"),
                    _room("!d:example.org", name="Gardening"),
                ]
            )
        )

        chunk = self.successResultOf(self._fetch())

        self.assertEqual([r.room_id for r in chunk.rooms], ["!d:example.org"])

    def test_malformed_entries_skipped(self) -> None:
        self.respond_with_json(
            _directory([{"name": "no room id"}, "nonsense", _room("!d:example.org")])
        )

        chunk = self.successResultOf(self._fetch())

        self.assertEqual([r.room_id for r in chunk.rooms], ["!d:example.org"])

    def test_malformed_response(self) -> None:
        self.respond_with_json({"chunk": "nope"})

        self.failureResultOf(self._fetch(), UpstreamUnavailableError)


class CustomKeywordsTestCase(GatewayTestCase):
    def default_config(self) -> Dict[str, Any]:
        config = default_config()
        config["nsfw_keywords"] = ["spoilers"]
        return config

    def test_custom_keywords(self) -> None:
        self.respond_with_json(
            _directory(
                [
                    _room("!a:example.org", name="Finale spoilers"),
                    _room("!b:example.org", name="NSFW chat"),
                ]
            )
        )

        chunk = self.successResultOf(
            defer.ensureDeferred(
                self.hs.get_room_list_handler().fetch_public_rooms(TEST_ACCESS_TOKEN)
            )
        )

        self.assertEqual([r.room_id for r in chunk.rooms], ["!b:example.org"])


class AggregatePublicRoomsTestCase(GatewayTestCase):
    def prepare(self, reactor, hs: ViewerServer) -> None:
        self.handler = hs.get_room_list_handler()

    def _respond_per_server(self, responses: Dict[str, Any]) -> None:
        def _request(method, uri, headers=None, bodyProducer=None):
            for server, response in responses.items():
                if ("server=" + server).encode("ascii") in uri:
                    if isinstance(response, defer.Deferred):
                        return response
                    return defer.succeed(response)
            raise AssertionError("Unexpected request to %r" % (uri,))

        self.mock_agent.request.side_effect = _request

    def test_aggregate(self) -> None:
        self._respond_per_server(
            {
                "one.org": FakeResponse.json(
                    payload=_directory(
                        [_room("!a:one.org"), _room("!shared:example.org")]
                    )
                ),
                "two.org": FakeResponse.json(
                    payload=_directory(
                        [_room("!shared:example.org"), _room("!b:two.org")]
                    )
                ),
                "down.org": FakeResponse.json(
                    code=502, payload={"errcode": "M_UNKNOWN", "error": "Bad gateway"}
                ),
            }
        )

        result = self.successResultOf(
            defer.ensureDeferred(
                self.handler.aggregate_public_rooms(
                    TEST_ACCESS_TOKEN,
                    ["one.org", "two.org", "down.org", "one.org"],
                    limit=5,
                )
            )
        )

        self.assertEqual(
            [r.room_id for r in result.rooms],
            ["!a:one.org", "!shared:example.org", "!b:two.org"],
        )
        self.assertEqual(
            result.failures, {"down.org": ErrorKind.UPSTREAM_UNAVAILABLE}
        )

        # one.org is only asked once
        requests = self.get_requests()
        self.assertEqual(len(requests), 3)
        for request in requests:
            self.assertEqual(request.json_body(), {"limit": 5})

    def test_cancelled(self) -> None:
        pending = defer.Deferred()
        self._respond_per_server(
            {
                "one.org": FakeResponse.json(payload=_directory([_room("!a:one.org")])),
                "slow.org": pending,
            }
        )
        cancellation = CancellationSignal()

        d = defer.ensureDeferred(
            self.handler.aggregate_public_rooms(
                TEST_ACCESS_TOKEN, ["one.org", "slow.org"], cancellation=cancellation
            )
        )
        self.assertNoResult(d)

        cancellation.fire()
        self.failureResultOf(d, CancelledError)
