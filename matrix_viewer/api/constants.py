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

"""Matrix protocol constants, and the limits we place on our
use of the upstream homeserver."""

from typing_extensions import Final

# Synapse will not return more than 1000 events from a single `/context` or
# `/messages` request.
MAX_CONTEXT_LIMIT = 1000

# The number of requests we make while paginating a space hierarchy before we
# give up trying to fill the requested limit.
NUM_MAX_REQUESTS = 10

# the maximum length for a server name is 255 characters
MAX_SERVER_NAME_LENGTH = 255


class EventTypes:
    Member: Final = "m.room.member"


class Direction:
    """The direction a pagination token should be followed in."""

    FORWARDS: Final = "f"
    BACKWARDS: Final = "b"
    LIST: Final = (FORWARDS, BACKWARDS)


class EventContentFields:
    """Fields found in events' content that we rewrite links in."""

    BODY: Final = "body"
    FORMATTED_BODY: Final = "formatted_body"


# The client-server API prefixes used for the upstream calls we make.
CLIENT_API_PREFIX = "/_matrix/client"
CLIENT_API_PREFIX_R0 = CLIENT_API_PREFIX + "/r0"
CLIENT_API_PREFIX_V1 = CLIENT_API_PREFIX + "/v1"
CLIENT_API_PREFIX_V3 = CLIENT_API_PREFIX + "/v3"
