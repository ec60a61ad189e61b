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
import os
import shutil
import tempfile
import unittest
from typing import Any, Dict, List, Optional

import yaml

from tests.utils import default_config


class ConfigFileTestCase(unittest.TestCase):
    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.dir, "viewer.yaml")

    def tearDown(self):
        shutil.rmtree(self.dir)

    def write_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        if config is None:
            config = default_config()
        with open(self.config_file, "w") as f:
            yaml.safe_dump(config, f)

    def write_config_without(self, *keys: str) -> None:
        config = default_config()
        for key in keys:
            config.pop(key, None)
        self.write_config(config)

    def add_lines_to_config(self, lines: List[str]) -> None:
        with open(self.config_file, "a") as f:
            for line in lines:
                f.write(line + "\n")
