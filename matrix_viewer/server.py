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
# This file provides the dependency container for the gateway: everything that
# handles a request gets its collaborators from here.

import functools
import logging
from typing import Any, Callable, Optional, TypeVar, cast

from twisted.internet.interfaces import IReactorTime

from matrix_viewer.config.gateway import GatewayConfig
from matrix_viewer.handlers.health import HealthCheck
from matrix_viewer.handlers.room_context import RoomContextHandler
from matrix_viewer.handlers.room_list import RoomListHandler
from matrix_viewer.handlers.room_member import RoomMemberHandler
from matrix_viewer.handlers.space_hierarchy import SpaceHierarchyHandler
from matrix_viewer.http.client import ViewerHttpClient
from matrix_viewer.util.permalinks import PermalinkRewriter

logger = logging.getLogger(__name__)


T = TypeVar("T", bound=Callable[..., Any])


def cache_in_self(builder: T) -> T:
    """Wraps a function called e.g. `get_foo`, checking if `self.foo` exists and
    returning if so. If not, calls the given function and sets `self.foo` to it.

    Also ensures that dependency cycles throw an exception correctly, rather
    than overflowing the stack.
    """

    if not builder.__name__.startswith("get_"):
        raise Exception(
            "@cache_in_self can only be used on functions starting with `get_`"
        )

    # get_attr -> _attr
    depname = builder.__name__[len("get") :]

    building = [False]

    @functools.wraps(builder)
    def _get(self):
        try:
            return getattr(self, depname)
        except AttributeError:
            pass

        # Prevent cyclic dependencies from deadlocking
        if building[0]:
            raise ValueError("Cyclic dependency while building %s" % (depname,))

        building[0] = True
        try:
            dep = builder(self)
            setattr(self, depname, dep)
        finally:
            building[0] = False

        return dep

    # We cast here as we need to tell mypy that `_get` has the same signature as
    # `builder`.
    return cast(T, _get)


class ViewerServer:
    """A basic gateway object.

    This supports lazily loading self-contained components: each `get_*`
    method builds its component the first time it is called, and then returns
    the same instance for the lifetime of the server. In tests, a component can
    be replaced by setting the corresponding `_*` attribute before it is first
    used.
    """

    def __init__(self, config: GatewayConfig, reactor: Optional[IReactorTime] = None):
        """
        Args:
            config: The full config for the gateway.
            reactor: the reactor to use. Defaults to the global one.
        """
        if not reactor:
            from twisted.internet import reactor as _reactor

            reactor = cast(IReactorTime, _reactor)

        self._reactor = reactor
        self.config = config

    def get_reactor(self) -> IReactorTime:
        """
        Fetch the Twisted reactor in use by this server.
        """
        return self._reactor

    @cache_in_self
    def get_http_client(self) -> ViewerHttpClient:
        """
        The HTTP client all requests to the homeserver go through.
        """
        return ViewerHttpClient(
            self.get_reactor(),
            user_agent=self.config.server.user_agent,
            request_timeout=self.config.server.request_timeout_ms / 1000,
        )

    @cache_in_self
    def get_permalink_rewriter(self) -> PermalinkRewriter:
        return PermalinkRewriter(
            self.config.server.permalink_gateway_host,
            source_host=self.config.server.permalink_source_host,
        )

    @cache_in_self
    def get_room_context_handler(self) -> RoomContextHandler:
        return RoomContextHandler(self)

    @cache_in_self
    def get_room_member_handler(self) -> RoomMemberHandler:
        return RoomMemberHandler(self)

    @cache_in_self
    def get_space_hierarchy_handler(self) -> SpaceHierarchyHandler:
        return SpaceHierarchyHandler(self)

    @cache_in_self
    def get_room_list_handler(self) -> RoomListHandler:
        return RoomListHandler(self)

    @cache_in_self
    def get_health_check(self) -> HealthCheck:
        return HealthCheck()
