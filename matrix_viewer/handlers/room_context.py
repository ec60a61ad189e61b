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
from typing import TYPE_CHECKING, Any, Iterable, List, Optional

from matrix_viewer.api.constants import (
    CLIENT_API_PREFIX_R0,
    MAX_CONTEXT_LIMIT,
    EventTypes,
)
from matrix_viewer.api.errors import (
    NotFoundError,
    UpstreamUnavailableError,
    WindowSizeError,
)
from matrix_viewer.events import ClientEvent, EventContext, EventWindow, MemberStateMap
from matrix_viewer.types import JsonMapping
from matrix_viewer.util import json_encoder
from matrix_viewer.util.cancellation import CancellationSignal, cancellable

if TYPE_CHECKING:
    from matrix_viewer.server import ViewerServer

logger = logging.getLogger(__name__)

# Only ask for the membership of the senders of the events we get back.
LAZY_LOAD_MEMBERS_FILTER = json_encoder.encode({"lazy_load_members": True})


def _parse_event_list(result: JsonMapping, key: str) -> List[ClientEvent]:
    events = result.get(key)
    if events is None:
        return []
    if not isinstance(events, list):
        raise ValueError("'%s' is not a list" % (key,))
    return [ClientEvent.from_dict(e) for e in events]


def build_member_state(state: Iterable[ClientEvent]) -> MemberStateMap:
    """Pick out the latest membership event for each user from a list of state
    events.

    Non-membership events are ignored. If there are several membership events
    for a user, a later one in the list replaces an earlier one unless it has a
    strictly older timestamp.
    """
    member_state: MemberStateMap = {}
    for event in state:
        if event.type != EventTypes.Member or event.state_key is None:
            continue

        existing = member_state.get(event.state_key)
        if existing is not None and event.origin_server_ts < existing.origin_server_ts:
            continue
        member_state[event.state_key] = event
    return member_state


class RoomContextHandler:
    def __init__(self, hs: "ViewerServer"):
        self._http_client = hs.get_http_client()
        self._server_url = hs.config.server.matrix_server_url

    @cancellable
    async def fetch_context(
        self,
        access_token: str,
        room_id: str,
        event_id: str,
        limit: int,
        cancellation: Optional[CancellationSignal] = None,
    ) -> EventContext:
        """Retrieves the events around a given event in a room, along with the
        membership of their senders.

        Args:
            access_token: the token to talk to the homeserver with
            room_id: the room the event is in
            event_id: the event to centre the window on
            limit: The maximum number of events to return in total, not
                counting the anchor event itself.
            cancellation: aborts the request when fired

        Returns:
            The window of events, oldest first, and the member state.

        Raises:
            WindowSizeError: if `limit` is out of range. No request is made.
            NotFoundError: if the room or event doesn't exist or we can't see it
            UpstreamUnavailableError: if the homeserver could not be reached or
                gave a broken response.
        """
        if not 0 <= limit <= MAX_CONTEXT_LIMIT:
            raise WindowSizeError(
                "limit must be between 0 and %d, got %d" % (MAX_CONTEXT_LIMIT, limit)
            )

        uri = "%s%s/rooms/%s/context/%s" % (
            self._server_url,
            CLIENT_API_PREFIX_R0,
            urllib.parse.quote(room_id, safe=""),
            urllib.parse.quote(event_id, safe=""),
        )

        try:
            result = await self._http_client.fetch_json(
                uri,
                access_token=access_token,
                cancellation=cancellation,
                args={"limit": str(limit), "filter": LAZY_LOAD_MEMBERS_FILTER},
            )
        except UpstreamUnavailableError as e:
            if e.code in (403, 404):
                raise NotFoundError(
                    "Event %s in %s not found: %s" % (event_id, room_id, e.msg),
                    errcode=e.errcode,
                ) from e
            raise

        return self._parse_context(result, room_id, event_id)

    def _parse_context(self, result: Any, room_id: str, event_id: str) -> EventContext:
        if not isinstance(result, dict) or not isinstance(result.get("event"), dict):
            raise UpstreamUnavailableError(
                "Context response for %s in %s did not include the event"
                % (event_id, room_id)
            )

        try:
            anchor = ClientEvent.from_dict(result["event"])
            events_before = _parse_event_list(result, "events_before")
            events_after = _parse_event_list(result, "events_after")
            state = _parse_event_list(result, "state")
        except ValueError as e:
            raise UpstreamUnavailableError(
                "Malformed context response for %s in %s: %s" % (event_id, room_id, e)
            ) from e

        # `events_before` comes back newest first.
        events_before.reverse()
        window = EventWindow(
            events=events_before + [anchor] + events_after,
            anchor_index=len(events_before),
        )

        logger.debug(
            "Fetched %d events around %s in %s", len(window), event_id, room_id
        )

        return EventContext(
            window=window,
            member_state=build_member_state(state),
            start=result.get("start"),
            end=result.get("end"),
        )
