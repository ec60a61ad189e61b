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
import re
from typing import List, Optional, Sequence, Tuple, Union

from netaddr import valid_ipv6

from matrix_viewer.api.constants import MAX_SERVER_NAME_LENGTH
from matrix_viewer.api.errors import InvalidParamError


def parse_server_name(server_name: str) -> Tuple[str, Optional[int]]:
    """Split a server name into host/port parts.

    Args:
        server_name: server name to parse

    Returns:
        host/port parts.

    Raises:
        ValueError if the server name could not be parsed.
    """
    try:
        if server_name and server_name[-1] == "]":
            # ipv6 literal, hopefully
            return server_name, None

        domain_port = server_name.rsplit(":", 1)
        domain = domain_port[0]
        port = int(domain_port[1]) if domain_port[1:] else None
        return domain, port
    except Exception:
        raise ValueError("Invalid server name '%s'" % server_name)


# An approximation of the domain name syntax in RFC 1035, section 2.3.1.
# NB: "\Z" is not equivalent to "$".
#     The latter will match the position before a "\n" at the end of a string.
VALID_HOST_REGEX = re.compile("\\A[0-9a-zA-Z-]+(?:\\.[0-9a-zA-Z-]+)*\\Z")


def parse_and_validate_server_name(server_name: str) -> Tuple[str, Optional[int]]:
    """Split a server name into host/port parts and do some basic validation.

    Args:
        server_name: server name to parse

    Returns:
        host/port parts.

    Raises:
        ValueError if the server name could not be parsed.
    """
    if len(server_name) > MAX_SERVER_NAME_LENGTH:
        raise ValueError("Server name '%s' is too long" % (server_name,))

    host, port = parse_server_name(server_name)

    # look for ipv6 literals
    if host and host[0] == "[":
        if host[-1] != "]":
            raise ValueError("Mismatched [...] in server name '%s'" % (server_name,))

        # valid_ipv6 raises when given an empty string
        ipv6_address = host[1:-1]
        if not ipv6_address or not valid_ipv6(ipv6_address):
            raise ValueError(
                "Server name '%s' is not a valid IPv6 address" % (server_name,)
            )
    elif not VALID_HOST_REGEX.match(host):
        raise ValueError("Server name '%s' has an invalid format" % (server_name,))

    return host, port


def parse_via_servers_from_user_input(
    value: Union[None, str, Sequence[str]]
) -> List[str]:
    """Turn the `?via=` query parameter(s) a user gave us into a list of server
    names we can pass on to the homeserver.

    Args:
        value: nothing, a single server name, or a list of them.

    Returns:
        The server names, de-duplicated, in the order they were given.

    Raises:
        InvalidParamError if any of the server names are invalid.
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]

    via_servers: List[str] = []
    for server_name in value:
        if not isinstance(server_name, str):
            raise InvalidParamError("?via server names must be strings")
        try:
            parse_and_validate_server_name(server_name)
        except ValueError as e:
            raise InvalidParamError("Invalid ?via server name: %s" % (e,)) from e

        if server_name not in via_servers:
            via_servers.append(server_name)

    return via_servers
