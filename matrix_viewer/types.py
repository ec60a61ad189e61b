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
import abc
import collections.abc
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Mapping,
    Optional,
    Type,
    TypeVar,
    Union,
)

import attr

from matrix_viewer.api.errors import InvalidParamError
from matrix_viewer.util.stringutils import parse_and_validate_server_name

# JSON types. These could be made stronger, but will do for now.
# A JSON-serialisable dict.
JsonDict = Dict[str, Any]
# A JSON-serialisable mapping; roughly speaking an immutable JSONDict.
JsonMapping = Mapping[str, Any]


DS = TypeVar("DS", bound="DomainSpecificString")


@attr.s(slots=True, frozen=True, repr=False, auto_attribs=True)
class DomainSpecificString(metaclass=abc.ABCMeta):
    """Common base class among ID/name strings that have a local part and a
    domain name, prefixed with a sigil.

    Has the fields:

        'localpart' : The local part of the name (without the leading sigil)
        'domain' : The domain part of the name
    """

    SIGIL: ClassVar[str] = abc.abstractproperty()  # type: ignore

    localpart: str
    domain: str

    # Because this is a frozen class, it is deeply immutable.
    def __copy__(self: DS) -> DS:
        return self

    def __deepcopy__(self: DS, memo: Dict[str, object]) -> DS:
        return self

    @classmethod
    def from_string(cls: Type[DS], s: str) -> DS:
        """Parse the string given by 's' into a structure object."""
        if len(s) < 1 or s[0:1] != cls.SIGIL:
            raise InvalidParamError(
                "Expected %s string to start with '%s'" % (cls.__name__, cls.SIGIL)
            )

        parts = s[1:].split(":", 1)
        if len(parts) != 2:
            raise InvalidParamError(
                "Expected %s of the form '%slocalname:domain'"
                % (cls.__name__, cls.SIGIL)
            )

        return cls(localpart=parts[0], domain=parts[1])

    def to_string(self) -> str:
        """Return a string encoding the fields of the structure object."""
        return "%s%s:%s" % (self.SIGIL, self.localpart, self.domain)

    @classmethod
    def is_valid(cls: Type[DS], s: str) -> bool:
        """Parses the input string and attempts to ensure it is valid."""
        try:
            obj = cls.from_string(s)
            # Apply additional validation to the domain. This is only done
            # during is_valid (and not part of from_string) since it is
            # possible for invalid data to exist in room-state, etc.
            parse_and_validate_server_name(obj.domain)
            return True
        except Exception:
            return False

    __repr__ = to_string


@attr.s(slots=True, frozen=True, repr=False)
class UserID(DomainSpecificString):
    """Structure representing a user ID."""

    SIGIL = "@"


@attr.s(slots=True, frozen=True, repr=False)
class RoomAlias(DomainSpecificString):
    """Structure representing a room name."""

    SIGIL = "#"


@attr.s(slots=True, frozen=True, repr=False)
class RoomID(DomainSpecificString):
    """Structure representing a room id."""

    SIGIL = "!"


# Permalink references.
#
# A parsed matrix.to link is exactly one of the classes below. Code handling a
# `PermalinkReference` should deal with every arm, including `UnrecognizedRef`,
# so that supporting a new kind of link is a matter of adding a class here.


@attr.s(slots=True, frozen=True, auto_attribs=True)
class UserRef:
    """A link to a user. We never rewrite these."""

    user_id: str
    # the link exactly as we found it
    raw: str


@attr.s(slots=True, frozen=True, auto_attribs=True)
class RoomAliasRef:
    """A link to a room (and optionally an event in it), by room alias.

    Attributes:
        alias: the alias, without its leading '#'
        event_id: the event the link points at, if any
        via_servers: the servers the link suggested to route via
    """

    alias: str
    event_id: Optional[str] = None
    via_servers: FrozenSet[str] = attr.ib(default=frozenset(), converter=frozenset)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class RoomIdRef:
    """A link to a room (and optionally an event in it), by room ID.

    Attributes:
        room_id: the room ID, without its leading '!'
        event_id: the event the link points at, if any
        via_servers: the servers the link suggested to route via
    """

    room_id: str
    event_id: Optional[str] = None
    via_servers: FrozenSet[str] = attr.ib(default=frozenset(), converter=frozenset)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class UnrecognizedRef:
    """A link of a shape we don't (yet) understand. Passed through untouched."""

    raw: str


PermalinkReference = Union[UserRef, RoomAliasRef, RoomIdRef, UnrecognizedRef]


RS = TypeVar("RS", bound="_RoomSummary")


@attr.s(slots=True, frozen=True, auto_attribs=True)
class _RoomSummary:
    """The fields the homeserver uses to describe a room in both the room
    directory and the space hierarchy."""

    room_id: str
    canonical_alias: Optional[str] = None
    name: Optional[str] = None
    topic: Optional[str] = None
    join_rule: Optional[str] = None
    world_readable: bool = False
    num_joined_members: int = 0
    avatar_url: Optional[str] = None
    room_type: Optional[str] = None

    @classmethod
    def _fields_from_dict(cls, d: JsonMapping) -> JsonDict:
        if not isinstance(d, collections.abc.Mapping):
            raise ValueError("Room summary is not a JSON object")

        room_id = d.get("room_id")
        if not isinstance(room_id, str):
            raise ValueError("Room summary is missing a room_id")

        return {
            "room_id": room_id,
            "canonical_alias": d.get("canonical_alias"),
            "name": d.get("name"),
            "topic": d.get("topic"),
            "join_rule": d.get("join_rule"),
            "world_readable": bool(d.get("world_readable", False)),
            "num_joined_members": d.get("num_joined_members", 0),
            "avatar_url": d.get("avatar_url"),
            "room_type": d.get("room_type"),
        }

    @classmethod
    def from_dict(cls: Type[RS], d: JsonMapping) -> RS:
        """Build a summary from the JSON the homeserver returned.

        Raises:
            ValueError if the JSON doesn't describe a room.
        """
        return cls(**cls._fields_from_dict(d))


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SpaceHierarchyEntry(_RoomSummary):
    """A room returned from the `/hierarchy` API.

    Attributes:
        children_count: the number of `m.space.child` events in the room, ie
            how many children it has in turn.
    """

    children_count: int = 0

    @classmethod
    def _fields_from_dict(cls, d: JsonMapping) -> JsonDict:
        fields = super()._fields_from_dict(d)
        children_state = d.get("children_state")
        fields["children_count"] = (
            len(children_state) if isinstance(children_state, list) else 0
        )
        return fields


@attr.s(slots=True, frozen=True, auto_attribs=True)
class PublicRoomEntry(_RoomSummary):
    """A room published in a homeserver's room directory."""

    guest_can_join: bool = False

    @classmethod
    def _fields_from_dict(cls, d: JsonMapping) -> JsonDict:
        fields = super()._fields_from_dict(d)
        fields["guest_can_join"] = bool(d.get("guest_can_join", False))
        return fields
