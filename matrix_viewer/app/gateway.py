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
import sys
from typing import List, Optional

from twisted.internet.interfaces import IReactorTime
from twisted.logger import LogBeginner, globalLogBeginner

import matrix_viewer
from matrix_viewer.config._base import ConfigError, format_config_error
from matrix_viewer.config.gateway import GatewayConfig
from matrix_viewer.config.logger import setup_logging
from matrix_viewer.server import ViewerServer

logger = logging.getLogger("matrix_viewer.app.gateway")


def setup(
    config_options: List[str],
    reactor: Optional[IReactorTime] = None,
    logBeginner: LogBeginner = globalLogBeginner,
) -> ViewerServer:
    """
    Args:
        config_options: The options passed to the gateway. Usually
            `sys.argv[1:]`.
        reactor: the reactor to use. Defaults to the global one.
        logBeginner: The Twisted logBeginner to use.

    Returns:
        A gateway instance.
    """
    try:
        config = GatewayConfig.load_config("Matrix viewer gateway", config_options)
    except ConfigError as e:
        sys.stderr.write("\n")
        for f in format_config_error(e):
            sys.stderr.write(f)
        sys.stderr.write("\n")
        sys.exit(1)

    setup_logging(config, logBeginner=logBeginner)

    hs = ViewerServer(config, reactor=reactor)

    logger.info(
        "Set up matrix-viewer %s for %s, serving links as %s",
        matrix_viewer.__version__,
        config.server.matrix_server_name,
        config.server.permalink_gateway_host,
    )
    if config.server.stop_search_engine_indexing:
        logger.info("Asking search engines not to index pages")

    return hs


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the `matrix-viewer` command.

    Loads and validates the configuration, sets up logging and builds the
    gateway, then reports that the configuration is usable. Serving pages is
    left to the application that embeds the gateway.
    """
    if argv is None:
        argv = sys.argv[1:]
    hs = setup(argv, logBeginner=globalLogBeginner)
    sys.stdout.write(
        "Configuration OK for %s\n" % (hs.config.server.matrix_server_name,)
    )


if __name__ == "__main__":
    main()
