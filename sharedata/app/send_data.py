# Copyright 2026 The Matrix.org Foundation C.I.C.
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

"""Runs one `sharedata` job from the command line:

    python -m sharedata.app.send_data -c sharedata.yaml message.json

The message is read from the given file, or from stdin when it is "-".
"""

import argparse
import logging
import sys
from typing import List, Optional

from twisted.internet import defer, task

from sharedata import __version__
from sharedata.api.errors import RecipientErrors, SharingError
from sharedata.config._base import ConfigError, format_config_error
from sharedata.config.logger import setup_logging
from sharedata.config.sharingserver import SharingServerConfig
from sharedata.server import SharingServer
from sharedata.util import json_decoder

logger = logging.getLogger("sharedata.app.send_data")


def _read_message(path: str) -> dict:
    if path == "-":
        text = sys.stdin.read()
    else:
        with open(path) as f:
            text = f.read()

    message = json_decoder.decode(text)
    if not isinstance(message, dict):
        raise ValueError("the message must be a JSON object")
    return message


async def run_job(server: SharingServer, message: dict) -> int:
    """Runs the job, and returns the exit code of the command."""
    try:
        await server.get_sharing_worker().process(message)
    except RecipientErrors as e:
        logger.error("%s", e)
        # 2 when nobody got the change, 3 when only some recipients did not
        return 2 if e.all_failed else 3
    except SharingError as e:
        logger.error("Sharing failed: %s", e)
        return 1

    logger.info("All recipients are up to date")
    return 0


def start(config_options: List[str]) -> None:
    parser = argparse.ArgumentParser(
        description="Replays a local change at the recipients of a sharing"
    )
    parser.add_argument(
        "message",
        metavar="MESSAGE_FILE",
        help="JSON file holding the job message, or - for stdin",
    )
    parser.add_argument(
        "--version", action="version", version="sharedata %s" % (__version__,)
    )

    try:
        config, args = SharingServerConfig.load_config_with_parser(
            parser, config_options
        )
    except ConfigError as e:
        sys.stderr.write("\n")
        for f in format_config_error(e):
            sys.stderr.write(f)
        sys.stderr.write("\n")
        sys.exit(1)

    try:
        message = _read_message(args.message)
    except (OSError, ValueError) as e:
        sys.stderr.write("Could not read %s: %s\n" % (args.message, e))
        sys.exit(1)

    setup_logging(config)

    # We use task.react as the basic run command as it correctly handles tearing
    # down the reactor when the deferreds resolve and setting the return value.
    def _run(reactor) -> defer.Deferred:
        server = SharingServer(config, reactor=reactor)

        async def _run_and_exit() -> None:
            code = await run_job(server, message)
            if code:
                raise SystemExit(code)

        return defer.ensureDeferred(_run_and_exit())

    task.react(_run)


def main(argv: Optional[List[str]] = None) -> None:
    start(sys.argv[1:] if argv is None else argv)


if __name__ == "__main__":
    main()
