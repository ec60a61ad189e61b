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
from typing import Any, Dict

import matrix_viewer
from matrix_viewer.config._base import ConfigError
from matrix_viewer.config.gateway import GatewayConfig
from matrix_viewer.config.server import DEFAULT_DIRECTORY_SERVERS
from matrix_viewer.util.nsfw import NSFW_WORDS

from tests import unittest
from tests.utils import TEST_ACCESS_TOKEN, default_config


def _parse(**overrides: Any) -> GatewayConfig:
    config_dict: Dict[str, Any] = default_config()
    for key, value in overrides.items():
        if value is None:
            config_dict.pop(key, None)
        else:
            config_dict[key] = value

    config = GatewayConfig()
    config.parse_config_dict(config_dict)
    return config


class ServerConfigTestCase(unittest.TestCase):
    def test_defaults(self):
        server = _parse().server

        self.assertEqual(server.matrix_server_url, "https://hs.example.org")
        self.assertEqual(server.matrix_server_name, "example.org")
        self.assertEqual(server.matrix_access_token, TEST_ACCESS_TOKEN)
        self.assertEqual(server.base_path, "https://view.example.org")
        self.assertEqual(server.permalink_gateway_host, "view.example.org")
        self.assertEqual(server.permalink_source_host, "matrix.to")
        self.assertEqual(server.request_timeout_ms, 60000)
        self.assertEqual(
            server.user_agent, "matrix-viewer/%s" % (matrix_viewer.__version__,)
        )
        self.assertFalse(server.stop_search_engine_indexing)
        self.assertEqual(server.directory_servers, DEFAULT_DIRECTORY_SERVERS)
        self.assertEqual(server.nsfw_keywords, list(NSFW_WORDS))

    def test_trailing_slashes_stripped(self):
        server = _parse(
            matrix_server_url="https://hs.example.org/",
            base_path="https://example.org/viewer/",
        ).server

        self.assertEqual(server.matrix_server_url, "https://hs.example.org")
        self.assertEqual(server.base_path, "https://example.org/viewer")
        # the path of the base_path is kept
        self.assertEqual(server.permalink_gateway_host, "example.org/viewer")

    def test_explicit_gateway_host(self):
        server = _parse(permalink_gateway_host="links.example.org/").server
        self.assertEqual(server.permalink_gateway_host, "links.example.org")

    def test_request_timeout(self):
        self.assertEqual(_parse(request_timeout="2m").server.request_timeout_ms, 120000)
        self.assertEqual(_parse(request_timeout=1500).server.request_timeout_ms, 1500)

    def test_bad_request_timeout(self):
        for value in ("soon", "6x", 0, -5):
            with self.assertRaises(ConfigError) as cm:
                _parse(request_timeout=value)
            self.assertEqual(cm.exception.path, ("request_timeout",))

    def test_bad_urls(self):
        for key in ("matrix_server_url", "base_path"):
            for value in ("ftp://example.org", "https://example.org/?x=1", 42):
                with self.assertRaises(ConfigError) as cm:
                    _parse(**{key: value})
                self.assertEqual(cm.exception.path, (key,))

    def test_missing_options(self):
        for key in (
            "matrix_server_url",
            "matrix_server_name",
            "matrix_access_token",
            "base_path",
        ):
            with self.assertRaises(ConfigError) as cm:
                _parse(**{key: None})
            self.assertEqual(cm.exception.path, (key,))

    def test_bad_server_name(self):
        with self.assertRaises(ConfigError):
            _parse(matrix_server_name="not a server")

    def test_directory_servers(self):
        server = _parse(directory_servers=["one.org", "two.org:8448"]).server
        self.assertEqual(server.directory_servers, ["one.org", "two.org:8448"])

        for value in ("one.org", ["one.org", 2], ["bad server"]):
            with self.assertRaises(ConfigError):
                _parse(directory_servers=value)

    def test_nsfw_keywords(self):
        self.assertEqual(_parse(nsfw_keywords=[]).server.nsfw_keywords, [])

        with self.assertRaises(ConfigError):
            _parse(nsfw_keywords="nsfw")
