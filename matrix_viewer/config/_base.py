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
import argparse
import logging
import os
import re
from typing import (
    Any,
    ClassVar,
    Collection,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
)

import yaml

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """A problem with the gateway's configuration.

    Args:
        msg: what is wrong
        path: the config keys leading to the bad value, if there is one
    """

    def __init__(self, msg: str, path: Optional[Iterable[str]] = None):
        self.msg = msg
        self.path = path


def format_config_error(e: ConfigError) -> Iterator[str]:
    """Describe a config error, and whatever caused it, for the admin.

    For example:

        Error in configuration at 'request_timeout':
          Invalid duration:
            invalid literal for int() with base 10: '6x'
    """
    where = " at '%s'" % (".".join(e.path),) if e.path else ""
    yield "Error in configuration%s:\n  %s" % (where, e.msg)

    cause = e.__cause__
    depth = 2
    while cause is not None:
        yield ":\n%s%s" % ("  " * depth, cause)
        cause = cause.__cause__
        depth += 1


# milliseconds in each duration unit
_DURATION_UNITS = {
    "": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
    "y": 365 * 24 * 60 * 60 * 1000,
}

_DURATION_RE = re.compile(r"^(-?\d+)([smhdwy]?)$")


class Config:
    """One section of the configuration, such as "server" or "logging".

    Each section reads its own keys from the (flat) config dict in
    `read_config`, and is then available as `config.<section>`.
    """

    section: ClassVar[str]

    def __init__(self, root_config: Optional["RootConfig"] = None):
        self.root = root_config

    def read_config(self, config: Dict[str, Any], **kwargs: Any) -> None:
        raise NotImplementedError()

    @staticmethod
    def parse_duration(value: Union[str, int]) -> int:
        """Convert a duration to milliseconds.

        An integer is already in milliseconds. A string is a number with an
        optional unit of s, m, h, d, w or y; with no unit it is milliseconds.

        Raises:
            ValueError if a string isn't a duration.
            TypeError if `value` is neither a string nor an integer.
        """
        if isinstance(value, int):
            return value
        m = _DURATION_RE.match(value)
        if m is None:
            raise ValueError("invalid duration %r" % (value,))
        return int(m.group(1)) * _DURATION_UNITS[m.group(2)]


TRootConfig = TypeVar("TRootConfig", bound="RootConfig")


class RootConfig:
    """The whole configuration: one attribute per class in `config_classes`,
    named after its section.
    """

    config_classes: List[Type[Config]] = []

    def __init__(self, config_files: Collection[str] = ()):
        self.config_files = [os.path.abspath(path) for path in config_files]

        for config_class in self.config_classes:
            setattr(self, config_class.section, config_class(self))

    @classmethod
    def load_config(
        cls: Type[TRootConfig], description: str, argv: List[str]
    ) -> TRootConfig:
        """Build the configuration from the files named on the command line.

        Each `-c` may name a file or a directory of `*.yaml` files. Later files
        override keys set in earlier ones.

        Raises:
            ConfigError if the config is invalid.
            SystemExit if no config file was given.
        """
        parser = argparse.ArgumentParser(description=description)
        parser.add_argument(
            "-c",
            "--config-path",
            action="append",
            metavar="CONFIG_FILE",
            help="Specify config file. Can be given multiple times and"
            " may specify directories containing *.yaml files.",
        )
        args = parser.parse_args(argv)

        config_files = _expand_config_paths(args.config_path or [])
        if not config_files:
            parser.error("Must supply a config file.")

        config = cls(config_files)
        config.parse_config_dict(
            _read_yaml_files(config_files),
            config_dir_path=os.path.dirname(config.config_files[-1]),
        )
        return config

    def parse_config_dict(
        self, config_dict: Dict[str, Any], config_dir_path: str = ""
    ) -> None:
        """Have each section read its keys from `config_dict`.

        Args:
            config_dict: the merged contents of the config files
            config_dir_path: where the last config file lives. Relative paths
                in the config are relative to this.
        """
        for config_class in self.config_classes:
            section = getattr(self, config_class.section)
            section.read_config(config_dict, config_dir_path=config_dir_path)


def _expand_config_paths(paths: Iterable[str]) -> List[str]:
    """Replace each directory in `paths` with the `*.yaml` files inside it, in
    sorted order."""
    config_files = []
    for path in paths:
        if not os.path.isdir(path):
            config_files.append(path)
            continue

        for entry in sorted(os.listdir(path)):
            entry_path = os.path.join(path, entry)
            if entry.endswith(".yaml") and os.path.isfile(entry_path):
                config_files.append(entry_path)
            else:
                logger.warning("Ignoring %r in config directory", entry_path)
    return config_files


def _read_yaml_files(config_files: Iterable[str]) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for config_file in config_files:
        with open(config_file) as f:
            contents = yaml.safe_load(f)

        if not isinstance(contents, dict):
            logger.warning("Ignoring %r: it is not a key-value map", config_file)
            continue
        config.update(contents)
    return config
