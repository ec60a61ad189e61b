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
import logging.config
import os
import sys
import threading
from typing import TYPE_CHECKING, Any, Optional

import yaml
from zope.interface import implementer

from twisted.logger import (
    ILogObserver,
    LogBeginner,
    STDLibLogObserver,
    eventAsText,
    globalLogBeginner,
)

import matrix_viewer
from matrix_viewer.types import JsonDict

from ._base import Config, ConfigError

if TYPE_CHECKING:
    from matrix_viewer.config.gateway import GatewayConfig

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(lineno)d - %(levelname)s - %(message)s"
)


class LoggingConfig(Config):
    section = "logging"

    def read_config(
        self, config: JsonDict, config_dir_path: str = "", **kwargs: Any
    ) -> None:
        log_config = config.get("log_config")
        if log_config is not None and not isinstance(log_config, str):
            raise ConfigError("Must be a path to a file", ("log_config",))

        # relative to the directory of the config file
        self.log_config = (
            os.path.abspath(os.path.join(config_dir_path, log_config))
            if log_config
            else None
        )


def _setup_stdlib_logging(
    log_config_path: Optional[str], logBeginner: LogBeginner
) -> None:
    """
    Set up Python standard library logging.
    """
    if log_config_path is None:
        logger = logging.getLogger("")
        logger.setLevel(logging.INFO)

        formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    else:
        # Load the logging configuration.
        _load_logging_config(log_config_path)

    # Route Twisted's native logging through to the standard library logging
    # system.
    observer = STDLibLogObserver()

    threadlocal = threading.local()

    @implementer(ILogObserver)
    def _log(event: dict) -> None:
        if "log_text" in event:
            if event["log_text"].startswith("Starting factory "):
                return

            if event["log_text"].startswith("Stopping factory "):
                return

        # this is a workaround to make sure we don't get stack overflows when the
        # logging system raises an error which is written to stderr which is redirected
        # to the logging system, etc.
        if getattr(threadlocal, "active", False):
            # write the text of the event, if any, to the *real* stderr (which may
            # be redirected to /dev/null, but there's not much we can do)
            try:
                event_text = eventAsText(event)
                print("logging during logging: %s" % event_text, file=sys.__stderr__)
            except Exception:
                # gah.
                pass
            return

        try:
            threadlocal.active = True
            return observer(event)
        finally:
            threadlocal.active = False

    logBeginner.beginLoggingTo([_log], redirectStandardIO=False)


def _load_logging_config(log_config_path: str) -> None:
    """
    Configure logging from a log config path.
    """
    with open(log_config_path, "rb") as f:
        log_config = yaml.safe_load(f.read())

    if not log_config:
        logging.warning("Loaded a blank logging config?")
        return

    if not isinstance(log_config, dict):
        raise ConfigError("Log config %r is not a key-value map" % (log_config_path,))

    logging.config.dictConfig(log_config)


def setup_logging(
    config: "GatewayConfig",
    logBeginner: LogBeginner = globalLogBeginner,
) -> None:
    """
    Set up the logging subsystem.

    Without a `log_config`, everything at INFO and above is written to stderr.

    Args:
        config: configuration data

        logBeginner: The Twisted logBeginner to use.
    """
    # Perform one-time logging configuration.
    _setup_stdlib_logging(config.logging.log_config, logBeginner=logBeginner)

    # Log immediately so we can grep backwards.
    logging.warning("***** STARTING SERVER *****")
    logging.warning("Server %s version %s", sys.argv[0], matrix_viewer.__version__)
    logging.info("Homeserver: %s", config.server.matrix_server_url)
