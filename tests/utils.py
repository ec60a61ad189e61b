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

from matrix_viewer.types import JsonDict

# the access token of the gateway's account in the default test config
TEST_ACCESS_TOKEN = "syt_viewer_token"


def default_config() -> JsonDict:
    """
    Create a reasonable test config.
    """
    return {
        "matrix_server_url": "https://hs.example.org",
        "matrix_server_name": "example.org",
        "matrix_access_token": TEST_ACCESS_TOKEN,
        "base_path": "https://view.example.org",
        "request_timeout": "60s",
    }
