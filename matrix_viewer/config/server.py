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
from typing import Any, List

import matrix_viewer
from matrix_viewer.types import JsonDict
from matrix_viewer.util.nsfw import NSFW_WORDS
from matrix_viewer.util.stringutils import parse_and_validate_server_name

from ._base import Config, ConfigError

logger = logging.getLogger(__name__)

# The homeservers whose room directories we aggregate, unless told otherwise.
DEFAULT_DIRECTORY_SERVERS = [
    "matrix.org",
    "midov.pl",
    "cutefunny.art",
    "lolisho.chat",
    "gitter.im",
]


def _parse_http_url(url: Any, config_key: str) -> str:
    if not isinstance(url, str):
        raise ConfigError("Must be a string", (config_key,))

    try:
        splits = urllib.parse.urlsplit(url)
    except ValueError as e:
        raise ConfigError(f"Unable to parse URL: {e}", (config_key,))
    if splits.scheme not in ("https", "http"):
        raise ConfigError(
            f"Invalid scheme '{splits.scheme}': only https and http are supported",
            (config_key,),
        )
    if splits.query or splits.fragment:
        raise ConfigError(
            "URL cannot contain query parameters or a #-fragment", (config_key,)
        )
    return url.rstrip("/")


def _parse_string_list(
    config: JsonDict, config_key: str, default: List[str]
) -> List[str]:
    value = config.get(config_key)
    if value is None:
        return list(default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError("Must be a list of strings", (config_key,))
    return value


class ServerConfig(Config):
    section = "server"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        for key in ("matrix_server_url", "matrix_server_name", "matrix_access_token"):
            if not config.get(key):
                raise ConfigError("Missing mandatory config option", (key,))

        # the client-server API of the homeserver we read everything through
        self.matrix_server_url = _parse_http_url(
            config["matrix_server_url"], "matrix_server_url"
        )

        self.matrix_server_name = config["matrix_server_name"]
        try:
            parse_and_validate_server_name(self.matrix_server_name)
        except ValueError as e:
            raise ConfigError(str(e), ("matrix_server_name",))

        self.matrix_access_token = config["matrix_access_token"]
        if not isinstance(self.matrix_access_token, str):
            raise ConfigError("Must be a string", ("matrix_access_token",))

        # where the gateway is served from
        base_path = config.get("base_path")
        if base_path is None:
            raise ConfigError("Missing mandatory config option", ("base_path",))
        self.base_path = _parse_http_url(base_path, "base_path")

        # Permalinks are rewritten to `<permalink_gateway_host>/r/...`. The scheme
        # of the original link is kept, so this doesn't have one.
        gateway_host = config.get("permalink_gateway_host")
        if gateway_host is None:
            splits = urllib.parse.urlsplit(self.base_path)
            gateway_host = splits.netloc + splits.path
            logger.info("Using default permalink_gateway_host %s", gateway_host)
        self.permalink_gateway_host = gateway_host.rstrip("/")
        self.permalink_source_host = config.get("permalink_source_host", "matrix.to")

        try:
            self.request_timeout_ms = self.parse_duration(
                config.get("request_timeout", "60s")
            )
        except (ValueError, TypeError, IndexError) as e:
            raise ConfigError("Invalid duration", ("request_timeout",)) from e
        if self.request_timeout_ms <= 0:
            raise ConfigError("Must be positive", ("request_timeout",))

        self.user_agent = config.get(
            "user_agent", "matrix-viewer/%s" % (matrix_viewer.__version__,)
        )

        self.stop_search_engine_indexing = bool(
            config.get("stop_search_engine_indexing", False)
        )

        self.directory_servers = _parse_string_list(
            config, "directory_servers", DEFAULT_DIRECTORY_SERVERS
        )
        for server_name in self.directory_servers:
            try:
                parse_and_validate_server_name(server_name)
            except ValueError as e:
                raise ConfigError(str(e), ("directory_servers",))

        self.nsfw_keywords = _parse_string_list(
            config, "nsfw_keywords", list(NSFW_WORDS)
        )
