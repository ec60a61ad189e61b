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
import json
import logging
from typing import Dict, Optional

import matrix_viewer

logger = logging.getLogger(__name__)


class HealthCheck:
    """Builds the body of the health-check response.

    The body only depends on things which can't change while we're running, so
    it is built on first use and then reused for the lifetime of the object.
    """

    def __init__(self, version_tags: Optional[Dict[str, str]] = None):
        self._version_tags = version_tags or {"version": matrix_viewer.__version__}
        self._response_body: Optional[bytes] = None

    def get_response_body(self) -> bytes:
        if self._response_body is None:
            response: Dict[str, object] = {"ok": True}
            response.update(self._version_tags)
            self._response_body = json.dumps(response, indent=2).encode("utf-8")
            logger.debug("Built health-check response")
        return self._response_body
