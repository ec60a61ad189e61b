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
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from matrix_viewer.api.constants import CLIENT_API_PREFIX_V3
from matrix_viewer.api.errors import InvalidParamError, UpstreamUnavailableError
from matrix_viewer.types import RoomAlias, RoomID
from matrix_viewer.util.cancellation import CancellationSignal, cancellable

if TYPE_CHECKING:
    from matrix_viewer.server import ViewerServer

logger = logging.getLogger(__name__)


class RoomMemberHandler:
    """Manages the gateway's own membership of rooms.

    Some things (like the hierarchy of a space) can only be read by a member of
    the room, so we join before reading them. Joining a room we are already in
    is a no-op on the homeserver's side.
    """

    def __init__(self, hs: "ViewerServer"):
        self._http_client = hs.get_http_client()
        self._server_url = hs.config.server.matrix_server_url

    @cancellable
    async def ensure_room_joined(
        self,
        access_token: str,
        room_id_or_alias: str,
        via_servers: Iterable[str] = (),
        cancellation: Optional[CancellationSignal] = None,
    ) -> str:
        """Join a room, if we're not already in it.

        Args:
            access_token: the token of the account to join with
            room_id_or_alias: the room to join
            via_servers: servers to try to join through, if the homeserver
                isn't already in the room
            cancellation: aborts the request when fired

        Returns:
            The ID of the room.

        Raises:
            InvalidParamError: if `room_id_or_alias` is neither a room ID nor an
                alias.
            UpstreamUnavailableError: if the join failed.
        """
        if not (
            RoomID.is_valid(room_id_or_alias) or RoomAlias.is_valid(room_id_or_alias)
        ):
            raise InvalidParamError(
                "%s was not legal room ID or room alias" % (room_id_or_alias,)
            )

        uri = "%s%s/join/%s" % (
            self._server_url,
            CLIENT_API_PREFIX_V3,
            urllib.parse.quote(room_id_or_alias, safe=""),
        )
        args: Dict[str, List[str]] = {}
        via_servers = list(via_servers)
        if via_servers:
            args["server_name"] = via_servers

        result = await self._http_client.fetch_json(
            uri,
            access_token=access_token,
            cancellation=cancellation,
            method="POST",
            args=args,
            json_body={},
        )

        room_id = result.get("room_id") if isinstance(result, dict) else None
        if not isinstance(room_id, str):
            raise UpstreamUnavailableError(
                "Join response for %s did not include a room_id" % (room_id_or_alias,)
            )

        logger.info("Joined %s (%s)", room_id_or_alias, room_id)
        return room_id
