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
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Set, Tuple

import attr

from twisted.internet.defer import CancelledError

from matrix_viewer.api.constants import CLIENT_API_PREFIX_V1, NUM_MAX_REQUESTS
from matrix_viewer.api.errors import (
    CodeMessageException,
    ErrorKind,
    NotFoundError,
    UpstreamUnavailableError,
    error_kind,
)
from matrix_viewer.types import SpaceHierarchyEntry
from matrix_viewer.util.cancellation import CancellationSignal, cancellable

if TYPE_CHECKING:
    from matrix_viewer.server import ViewerServer

logger = logging.getLogger(__name__)

# What we call a space page if the space doesn't have a name (or we couldn't
# find out what it is).
DEFAULT_SPACE_TITLE = "Matrix Viewer"
DEFAULT_SPACE_TOPIC = " "


@attr.s(slots=True, frozen=True, auto_attribs=True)
class PageError:
    """Why (part of) a page couldn't be built, to be shown to the user."""

    message: str
    kind: ErrorKind


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SpacePage:
    """Everything needed to show the rooms in a space.

    Attributes:
        room_id: the ID of the space, if we got as far as resolving it
        title: the name of the space
        topic: the topic of the space
        rooms: the world-readable rooms in the space
        error: set if we failed to fetch the space
    """

    room_id: Optional[str] = None
    title: str = DEFAULT_SPACE_TITLE
    topic: str = DEFAULT_SPACE_TOPIC
    rooms: Tuple[SpaceHierarchyEntry, ...] = attr.ib(default=(), converter=tuple)
    error: Optional[PageError] = None


class SpaceHierarchyHandler:
    def __init__(self, hs: "ViewerServer"):
        self._http_client = hs.get_http_client()
        self._server_url = hs.config.server.matrix_server_url
        self._access_token = hs.config.server.matrix_access_token
        self._room_member_handler = hs.get_room_member_handler()

    async def _fetch_hierarchy_page(
        self,
        access_token: str,
        root_room_id: str,
        from_token: Optional[str],
        cancellation: Optional[CancellationSignal],
    ) -> Tuple[List[SpaceHierarchyEntry], Optional[str]]:
        """Fetch one page of the direct children of a space.

        Returns:
            The rooms on the page, and the token for the next page (if any).
        """
        uri = "%s%s/rooms/%s/hierarchy" % (
            self._server_url,
            CLIENT_API_PREFIX_V1,
            urllib.parse.quote(root_room_id, safe=""),
        )
        args = {"max_depth": "1"}
        if from_token:
            args["from"] = from_token

        try:
            result = await self._http_client.fetch_json(
                uri, access_token=access_token, cancellation=cancellation, args=args
            )
        except UpstreamUnavailableError as e:
            if e.code in (403, 404):
                raise NotFoundError(
                    "Space %s not found: %s" % (root_room_id, e.msg),
                    errcode=e.errcode,
                ) from e
            raise

        return self._parse_hierarchy_page(result, root_room_id)

    def _parse_hierarchy_page(
        self, result: Any, root_room_id: str
    ) -> Tuple[List[SpaceHierarchyEntry], Optional[str]]:
        if not isinstance(result, dict):
            raise UpstreamUnavailableError(
                "Hierarchy response for %s was not an object" % (root_room_id,)
            )

        rooms = result.get("rooms", [])
        if not isinstance(rooms, list):
            raise UpstreamUnavailableError(
                "Hierarchy response for %s has a malformed room list" % (root_room_id,)
            )

        try:
            entries = [SpaceHierarchyEntry.from_dict(room) for room in rooms]
        except ValueError as e:
            raise UpstreamUnavailableError(
                "Hierarchy response for %s has a malformed room: %s"
                % (root_room_id, e)
            ) from e

        next_batch = result.get("next_batch")
        if not isinstance(next_batch, str):
            next_batch = None
        return entries, next_batch

    @cancellable
    async def fetch_space_rooms(
        self,
        access_token: str,
        root_room_id: str,
        cancellation: Optional[CancellationSignal] = None,
    ) -> List[SpaceHierarchyEntry]:
        """Get the rooms directly inside a space (and the space itself).

        Only the first page the homeserver returns is fetched.

        Raises:
            NotFoundError: if the space doesn't exist or we can't see it
            UpstreamUnavailableError: if the homeserver could not be reached or
                gave a broken response.
        """
        rooms, _ = await self._fetch_hierarchy_page(
            access_token, root_room_id, None, cancellation
        )
        return rooms

    @cancellable
    async def fetch_all_space_rooms(
        self,
        access_token: str,
        root_room_id: str,
        cancellation: Optional[CancellationSignal] = None,
        limit: Optional[int] = None,
    ) -> List[SpaceHierarchyEntry]:
        """Like `fetch_space_rooms`, but follows the pagination of the hierarchy.

        Gives up after NUM_MAX_REQUESTS requests, even if there are more pages.

        Args:
            access_token: the token to talk to the homeserver with
            root_room_id: the space
            cancellation: aborts the requests when fired
            limit: stop once we have this many rooms
        """
        rooms: List[SpaceHierarchyEntry] = []
        seen: Set[str] = set()
        from_token = None

        for _ in range(NUM_MAX_REQUESTS):
            page, from_token = await self._fetch_hierarchy_page(
                access_token, root_room_id, from_token, cancellation
            )
            for room in page:
                if room.room_id not in seen:
                    seen.add(room.room_id)
                    rooms.append(room)

            if limit is not None and len(rooms) >= limit:
                return rooms[:limit]
            if not from_token:
                break
        else:
            logger.info(
                "Gave up paginating the hierarchy of %s after %d requests",
                root_room_id,
                NUM_MAX_REQUESTS,
            )

        return rooms

    @cancellable
    async def get_space_page(
        self,
        room_id_or_alias: str,
        via_servers: Iterable[str] = (),
        cancellation: Optional[CancellationSignal] = None,
    ) -> SpacePage:
        """Build the page showing the rooms in a space.

        A bare name (with no sigil) is treated as an alias. Failures other than
        cancellation are reported in the `error` of the page, rather than
        raised.

        Args:
            room_id_or_alias: the space
            via_servers: servers to join the space through
            cancellation: aborts the requests when fired
        """
        if room_id_or_alias[:1] not in ("#", "!"):
            room_id_or_alias = "#" + room_id_or_alias

        room_id = None
        try:
            room_id = await self._room_member_handler.ensure_room_joined(
                self._access_token,
                room_id_or_alias,
                via_servers=via_servers,
                cancellation=cancellation,
            )
            rooms = await self.fetch_space_rooms(
                self._access_token, room_id, cancellation=cancellation
            )
        except CancelledError:
            raise
        except Exception as e:
            kind = error_kind(e)
            assert kind is not None
            if kind == ErrorKind.UNKNOWN:
                logger.exception("Failed to fetch space %s", room_id_or_alias)
            else:
                logger.info("Failed to fetch space %s: %s", room_id_or_alias, e)

            message = e.msg if isinstance(e, CodeMessageException) else str(e)
            return SpacePage(
                room_id=room_id, error=PageError(message=message, kind=kind)
            )

        title = DEFAULT_SPACE_TITLE
        topic = DEFAULT_SPACE_TOPIC
        for room in rooms:
            if room.room_id == room_id:
                title = room.name or DEFAULT_SPACE_TITLE
                topic = room.topic or DEFAULT_SPACE_TOPIC
                break

        return SpacePage(
            room_id=room_id,
            title=title,
            topic=topic,
            rooms=[room for room in rooms if room.world_readable],
        )
