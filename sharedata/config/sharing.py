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

from sharedata.config._base import Config
from sharedata.config._util import validate_config

_SHARING_SCHEMA = {
    "type": "object",
    "properties": {
        "max_concurrent_recipients": {"type": "integer", "minimum": 1},
        "storage_path": {"type": "string"},
    },
}


class SharingConfig(Config):
    section = "sharing"

    def read_config(self, config: Dict[str, Any], **kwargs: Any) -> None:
        sharing_config = config.get("sharing") or {}
        validate_config(_SHARING_SCHEMA, sharing_config, ("sharing",))

        # How many recipients are brought up to date at the same time. 1 means
        # that they are processed one after the other.
        self.max_concurrent_recipients = sharing_config.get(
            "max_concurrent_recipients", 5
        )

        self.storage_path = self.abspath(sharing_config.get("storage_path", ""))
