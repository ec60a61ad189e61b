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
"""Parsing `matrix.to` permalinks, and rewriting them to point at the gateway."""

import logging
import re
from typing import FrozenSet, Iterable, List, Optional, Tuple

import attr

from matrix_viewer.api.constants import EventContentFields
from matrix_viewer.api.errors import MalformedLinkError
from matrix_viewer.events import ClientEvent
from matrix_viewer.types import (
    PermalinkReference,
    RoomAliasRef,
    RoomIdRef,
    UnrecognizedRef,
    UserRef,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_HOST = "matrix.to"

# A link ends at whitespace, or at anything which is likely to be the markup
# (or prose) surrounding it. Punctuation at the very end is taken to belong to
# the sentence rather than the link.
_LINK_BODY = r"[^\s)\"'<>]*[^\s)\"'<>.,;:!?\]]"

# `via` parameters may be separated by `&` or simply run together, eg
# `via=a.orgvia=b.org`.
_VIA_SEPARATOR = re.compile("&?via=")


def _split_query(token: str) -> Tuple[str, Optional[str]]:
    """Split `a?b` into `("a", "b")`, and `a` into `("a", None)`."""
    if "?" not in token:
        return token, None
    path, query = token.split("?", 1)
    return path, query


def _via_servers_from_query(query: Optional[str]) -> FrozenSet[str]:
    """Pull the `via` servers out of the query of a permalink.

    Anything before the first `via=`, and any other `&key=value` parameter
    following a server, is ignored.
    """
    if not query:
        return frozenset()

    # the first piece is whatever came before the first `via=`
    pieces = _VIA_SEPARATOR.split(query)[1:]
    servers = (piece.split("&", 1)[0] for piece in pieces)
    return frozenset(server for server in servers if server)


class PermalinkRewriter:
    """Turns `matrix.to` links into links to the gateway.

    Args:
        gateway_host: the host (and optional path prefix) links are rewritten
            to, eg `view.example.org`.
        source_host: the host of the links we rewrite.
    """

    def __init__(self, gateway_host: str, source_host: str = DEFAULT_SOURCE_HOST):
        self._gateway_host = gateway_host.rstrip("/")
        self._source_host = source_host

        escaped_host = re.escape(source_host)
        self._permalink_pattern = re.compile(
            r"^(?:https?://)?%s/#/(.*)" % (escaped_host,), re.IGNORECASE | re.DOTALL
        )
        self._scan_pattern = re.compile(
            r"%s/#/%s" % (escaped_host, _LINK_BODY), re.IGNORECASE
        )

    def parse(self, raw: str) -> PermalinkReference:
        """Work out what a permalink points at.

        Links to things we don't know how to handle come back as an
        `UnrecognizedRef` rather than raising.

        Raises:
            MalformedLinkError if `raw` is not a permalink at all.
        """
        if not raw:
            raise MalformedLinkError()

        m = self._permalink_pattern.match(raw)
        if m is None:
            raise MalformedLinkError()

        parts = m.group(1).split("/")
        entity = parts[0]
        sigil = entity[:1]

        if sigil == "@":
            # a user: there's nothing to rewrite.
            return UserRef(user_id=entity, raw=raw)

        if sigil not in ("#", "!"):
            logger.info("Unknown entity type in permalink: %s", raw)
            return UnrecognizedRef(raw=raw)

        localpart, entity_query = _split_query(entity[1:])
        if not localpart:
            logger.info("Permalink has no room in it: %s", raw)
            return UnrecognizedRef(raw=raw)

        event_id = None
        query = entity_query
        if len(parts) > 1:
            # event IDs from room v3 onwards can contain slashes, so glue the
            # rest of the path back together
            event_id, event_query = _split_query("/".join(parts[1:]))
            if event_query is not None:
                query = event_query
            if not event_id:
                event_id = None

        via_servers = _via_servers_from_query(query)

        if sigil == "#":
            return RoomAliasRef(
                alias=localpart, event_id=event_id, via_servers=via_servers
            )
        return RoomIdRef(room_id=localpart, event_id=event_id, via_servers=via_servers)

    def render(self, ref: PermalinkReference) -> str:
        """Build the gateway's equivalent of a parsed permalink."""
        if isinstance(ref, RoomAliasRef):
            link = "%s/r/%s" % (self._gateway_host, ref.alias)
        elif isinstance(ref, RoomIdRef):
            link = "%s/roomid/%s" % (self._gateway_host, ref.room_id)
        else:
            return ref.raw

        if ref.event_id is not None:
            link += "/event/%s" % (ref.event_id,)
        return link

    def rewrite_all_links(self, text: str) -> str:
        """Replace every permalink in a block of text (plain or HTML) with a
        link to the gateway. Anything we can't rewrite is left alone.
        """
        return self._scan_pattern.sub(
            lambda m: self.render(self.parse(m.group(0))), text
        )

    def rewrite_links_in_events(
        self, events: Iterable[ClientEvent]
    ) -> List[ClientEvent]:
        """Rewrite the permalinks in the bodies of a batch of events.

        Only `content.body` and `content.formatted_body` are touched.
        """
        result = []
        for event in events:
            content = event.content
            if not isinstance(content, dict):
                result.append(event)
                continue

            new_content = dict(content)
            for field in (EventContentFields.BODY, EventContentFields.FORMATTED_BODY):
                value = content.get(field)
                if isinstance(value, str):
                    new_content[field] = self.rewrite_all_links(value)

            result.append(attr.evolve(event, content=new_content))
        return result
