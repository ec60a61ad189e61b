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

"""The events we fetch from the homeserver, and the windows of room history we
build out of them."""

import collections.abc
from typing import Any, Dict, Iterator, Optional, Tuple

import attr

from matrix_viewer.types import JsonDict, JsonMapping


@attr.s(slots=True, frozen=True, auto_attribs=True)
class ClientEvent:
    """An event, as served to us over the client-server API.

    `content` is left as the homeserver gave it to us: it is usually a dict,
    but we don't rely on that.
    """

    event_id: str
    type: str
    sender: str
    origin_server_ts: int
    content: Any
    room_id: Optional[str] = None
    state_key: Optional[str] = None
    unsigned: Optional[JsonDict] = None

    @classmethod
    def from_dict(cls, d: JsonMapping) -> "ClientEvent":
        """
        Raises:
            ValueError if the dict is not an event.
        """
        if not isinstance(d, collections.abc.Mapping):
            raise ValueError("Event is not a JSON object")

        event_id = d.get("event_id")
        event_type = d.get("type")
        if not isinstance(event_id, str) or not isinstance(event_type, str):
            raise ValueError("Event is missing an event_id or type")

        return cls(
            event_id=event_id,
            type=event_type,
            sender=d.get("sender", ""),
            origin_server_ts=d.get("origin_server_ts", 0),
            content=d.get("content"),
            room_id=d.get("room_id"),
            state_key=d.get("state_key"),
            unsigned=d.get("unsigned"),
        )

    def to_dict(self) -> JsonDict:
        d: JsonDict = {
            "event_id": self.event_id,
            "type": self.type,
            "sender": self.sender,
            "origin_server_ts": self.origin_server_ts,
            "content": self.content,
        }
        if self.room_id is not None:
            d["room_id"] = self.room_id
        if self.state_key is not None:
            d["state_key"] = self.state_key
        if self.unsigned is not None:
            d["unsigned"] = self.unsigned
        return d

    def is_state(self) -> bool:
        return self.state_key is not None


def _anchor_in_window(
    instance: "EventWindow", attribute: "attr.Attribute[int]", value: int
) -> None:
    if not 0 <= value < len(instance.events):
        raise ValueError(
            "Anchor index %d is outside of a window of %d events"
            % (value, len(instance.events))
        )


@attr.s(slots=True, frozen=True, auto_attribs=True)
class EventWindow:
    """A contiguous slice of a room's history, oldest event first.

    Attributes:
        events: the events, in the order the homeserver sequenced them
        anchor_index: the position of the event the caller asked about
    """

    events: Tuple[ClientEvent, ...] = attr.ib(converter=tuple)
    anchor_index: int = attr.ib(validator=_anchor_in_window)

    @property
    def anchor(self) -> ClientEvent:
        return self.events[self.anchor_index]

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[ClientEvent]:
        return iter(self.events)


# user ID -> their latest m.room.member event
MemberStateMap = Dict[str, ClientEvent]


@attr.s(slots=True, frozen=True, auto_attribs=True)
class EventContext:
    """The result of looking up the context of an event.

    Attributes:
        window: the events around (and including) the anchor event
        member_state: the membership of the senders in the window
        start: a token to paginate backwards from the start of the window
        end: a token to paginate forwards from the end of the window
    """

    window: EventWindow
    member_state: MemberStateMap
    start: Optional[str] = None
    end: Optional[str] = None
