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
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Tuple

import attr

from matrix_viewer.api.constants import CLIENT_API_PREFIX_V3, Direction
from matrix_viewer.api.errors import (
    ErrorKind,
    InvalidParamError,
    UpstreamUnavailableError,
)
from matrix_viewer.types import JsonDict, PublicRoomEntry
from matrix_viewer.util.async_helpers import gather_results_isolated
from matrix_viewer.util.cancellation import CancellationSignal, cancellable
from matrix_viewer.util.nsfw import check_text_for_nsfw

if TYPE_CHECKING:
    from matrix_viewer.server import ViewerServer

logger = logging.getLogger(__name__)

# How many rooms to ask each homeserver for when aggregating directories.
DEFAULT_AGGREGATE_LIMIT = 100


@attr.s(slots=True, frozen=True, auto_attribs=True)
class PublicRoomsChunk:
    """One page of a room directory.

    Attributes:
        rooms: the rooms on the page, minus any we filtered out
        next_batch: token for the next page, if there is one
        prev_batch: token for the previous page, if there is one
    """

    rooms: Tuple[PublicRoomEntry, ...] = attr.ib(converter=tuple)
    next_batch: Optional[str] = None
    prev_batch: Optional[str] = None


@attr.s(slots=True, frozen=True, auto_attribs=True)
class AggregatedRooms:
    """The rooms from the directories of several homeservers.

    Attributes:
        rooms: every room we found, each listed once, in the order we first
            saw them
        failures: the homeservers we couldn't get a directory from, and why
    """

    rooms: Tuple[PublicRoomEntry, ...] = attr.ib(converter=tuple)
    failures: Dict[str, ErrorKind] = attr.Factory(dict)


class RoomListHandler:
    def __init__(self, hs: "ViewerServer"):
        self._http_client = hs.get_http_client()
        self._server_url = hs.config.server.matrix_server_url
        self._nsfw_keywords = hs.config.server.nsfw_keywords

    def _is_room_hidden(self, room: PublicRoomEntry) -> bool:
        for text in (room.name, room.topic, room.canonical_alias):
            if text and check_text_for_nsfw(text, self._nsfw_keywords):
                return True
        return False

    @cancellable
    async def fetch_public_rooms(
        self,
        access_token: str,
        server: Optional[str] = None,
        search_term: Optional[str] = None,
        pagination_token: Optional[str] = None,
        direction: Optional[str] = None,
        limit: Optional[int] = None,
        room_type: Optional[str] = None,
        cancellation: Optional[CancellationSignal] = None,
    ) -> PublicRoomsChunk:
        """Fetch a page of a room directory.

        Args:
            access_token: the token to talk to the homeserver with
            server: whose directory to fetch. Defaults to our homeserver's.
            search_term: only return rooms matching this
            pagination_token: where to start the page
            direction: which way `pagination_token` goes. Must be given if (and
                only if) `pagination_token` is.
            limit: the maximum number of rooms to ask for. We may return fewer,
                as some rooms are filtered out.
            room_type: only return rooms of this type
            cancellation: aborts the request when fired

        Raises:
            InvalidParamError: if the pagination parameters are bad
            UpstreamUnavailableError: if the homeserver could not be reached or
                gave a broken response.
        """
        # You must provide both `pagination_token` and `direction` if either is
        # given.
        if pagination_token or direction:
            if direction not in Direction.LIST:
                raise InvalidParamError("dir must be one of %s" % (Direction.LIST,))
            if not pagination_token:
                raise InvalidParamError("page must be given if dir is given")

        uri = "%s%s/publicRooms" % (self._server_url, CLIENT_API_PREFIX_V3)
        args: Dict[str, str] = {}
        if server:
            args["server"] = server

        body: JsonDict = {}
        if limit is not None:
            body["limit"] = limit
        if pagination_token:
            body["since"] = pagination_token

        search_filter: JsonDict = {}
        if search_term:
            search_filter["generic_search_term"] = search_term
        if room_type:
            search_filter["room_types"] = [room_type]
        if search_filter:
            body["filter"] = search_filter

        result = await self._http_client.fetch_json(
            uri,
            access_token=access_token,
            cancellation=cancellation,
            method="POST",
            args=args,
            json_body=body,
        )
        return self._parse_public_rooms(result, server)

    def _parse_public_rooms(
        self, result: Any, server: Optional[str]
    ) -> PublicRoomsChunk:
        if not isinstance(result, dict) or not isinstance(
            result.get("chunk", []), list
        ):
            raise UpstreamUnavailableError(
                "Malformed room directory response from %s" % (server or "homeserver",)
            )

        rooms = []
        for room_dict in result.get("chunk", []):
            try:
                room = PublicRoomEntry.from_dict(room_dict)
            except ValueError as e:
                logger.warning("Ignoring malformed room directory entry: %s", e)
                continue

            if self._is_room_hidden(room):
                logger.debug("Hiding %s from the room directory", room.room_id)
                continue
            rooms.append(room)

        next_batch = result.get("next_batch")
        prev_batch = result.get("prev_batch")
        return PublicRoomsChunk(
            rooms=rooms,
            next_batch=next_batch if isinstance(next_batch, str) else None,
            prev_batch=prev_batch if isinstance(prev_batch, str) else None,
        )

    @cancellable
    async def aggregate_public_rooms(
        self,
        access_token: str,
        servers: Iterable[str],
        limit: int = DEFAULT_AGGREGATE_LIMIT,
        cancellation: Optional[CancellationSignal] = None,
    ) -> AggregatedRooms:
        """Fetch the first page of several homeservers' directories at once.

        A homeserver failing does not stop us using the others: it is reported
        in `failures` instead. Cancellation stops all the requests and is
        raised.

        Args:
            access_token: the token to talk to our homeserver with
            servers: the homeservers whose directories we want
            limit: how many rooms to ask each homeserver for
            cancellation: aborts the requests when fired
        """
        # dedupe, keeping the order
        servers = list(dict.fromkeys(servers))

        async def _fetch_one(server: str) -> PublicRoomsChunk:
            return await self.fetch_public_rooms(
                access_token,
                server=server,
                limit=limit,
                cancellation=cancellation.child() if cancellation else None,
            )

        outcomes = await gather_results_isolated(_fetch_one, servers)

        rooms: List[PublicRoomEntry] = []
        seen: Set[str] = set()
        failures: Dict[str, ErrorKind] = {}
        for server, outcome in zip(servers, outcomes):
            if outcome.error is not None:
                failures[server] = outcome.error
                continue

            assert outcome.value is not None
            for room in outcome.value.rooms:
                if room.room_id not in seen:
                    seen.add(room.room_id)
                    rooms.append(room)

        logger.info(
            "Aggregated %d rooms from %d homeservers (%d failed)",
            len(rooms),
            len(servers),
            len(failures),
        )
        return AggregatedRooms(rooms=rooms, failures=failures)
