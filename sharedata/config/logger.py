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
import argparse
import logging
import logging.config
import sys
import threading
from typing import TYPE_CHECKING, Any, Dict, Optional

import yaml
from zope.interface import implementer

from twisted.logger import (
    ILogObserver,
    LogBeginner,
    STDLibLogObserver,
    eventAsText,
    globalLogBeginner,
)

from sharedata import __version__

from ._base import Config, ConfigError

if TYPE_CHECKING:
    from sharedata.config.sharingserver import SharingServerConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(lineno)d - %(levelname)s - %(message)s"


class LoggingConfig(Config):
    section = "logging"

    def read_config(self, config: Dict[str, Any], **kwargs: Any) -> None:
        log_config = config.get("log_config")
        if log_config is not None and not isinstance(log_config, str):
            raise ConfigError("log_config must be a path", ("log_config",))

        self.log_config: Optional[str] = None
        if log_config:
            self.log_config = self.check_file(log_config, "log_config")
        self.verbosity = 0

    def read_arguments(self, args: argparse.Namespace) -> None:
        if getattr(args, "verbose", None):
            self.verbosity = args.verbose

    @staticmethod
    def add_arguments(parser: argparse.ArgumentParser) -> None:
        logging_group = parser.add_argument_group("logging")
        logging_group.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Log at DEBUG level when no log config is given",
        )


def _setup_stdlib_logging(
    log_config_path: Optional[str], verbosity: int, logBeginner: LogBeginner
) -> None:
    """
    Set up Python standard library logging.
    """
    if log_config_path is None:
        logger = logging.getLogger("")
        logger.setLevel(logging.DEBUG if verbosity else logging.INFO)

        formatter = logging.Formatter(LOG_FORMAT)

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

    logging.config.dictConfig(log_config)


def setup_logging(
    config: "SharingServerConfig",
    logBeginner: LogBeginner = globalLogBeginner,
) -> None:
    """
    Set up the logging subsystem.

    Args:
        config: configuration data

        logBeginner: The Twisted logBeginner to use.

    """
    _setup_stdlib_logging(
        config.logging.log_config,
        config.logging.verbosity,
        logBeginner=logBeginner,
    )

    # Log immediately so we can grep backwards.
    logging.info("sharedata version %s", __version__)
