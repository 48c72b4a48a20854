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

from typing import Any, Dict

from sharedata.config._base import Config, ConfigError
from sharedata.config._util import validate_config

_TRANSPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "client_timeout": {"type": ["string", "integer"]},
        "user_agent_suffix": {"type": "string"},
        "default_scheme": {"type": "string", "enum": ["http", "https"]},
    },
}


class TransportConfig(Config):
    """Settings for the requests made to the recipients."""

    section = "transport"

    def read_config(self, config: Dict[str, Any], **kwargs: Any) -> None:
        transport_config = config.get("transport") or {}
        validate_config(_TRANSPORT_SCHEMA, transport_config, ("transport",))

        try:
            self.client_timeout_ms = self.parse_duration(
                transport_config.get("client_timeout", "60s")
            )
        except ValueError as e:
            raise ConfigError(str(e), ("transport", "client_timeout"))
        if self.client_timeout_ms <= 0:
            raise ConfigError(
                "must be a positive duration", ("transport", "client_timeout")
            )

        self.user_agent_suffix = transport_config.get("user_agent_suffix", "")
        self.default_scheme = transport_config.get("default_scheme", "https")

    @property
    def client_timeout(self) -> float:
        """The timeout of a single request, in seconds."""
        return self.client_timeout_ms / 1000.0
