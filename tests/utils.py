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
from typing import Any, Dict, Optional

from sharedata.config.sharingserver import SharingServerConfig
from sharedata.server import SharingServer


def default_config() -> Dict[str, Any]:
    """
    Create a reasonable test config.
    """
    return {
        "transport": {"client_timeout": "10s", "default_scheme": "https"},
        "sharing": {"max_concurrent_recipients": 5, "storage_path": "storage"},
    }


def parse_config(config_dict: Dict[str, Any]) -> SharingServerConfig:
    config = SharingServerConfig()
    config.parse_config_dict(config_dict)
    return config


def setup_test_server(
    reactor: Any, config: Optional[Dict[str, Any]] = None, **kwargs: Any
) -> SharingServer:
    """
    Setup a sharing server suitable for running tests against. Any
    dependency given as a keyword argument replaces the real one, eg
    `http_client=Mock()`.
    """
    if config is None:
        config = default_config()

    return SharingServer(parse_config(config), reactor=reactor, **kwargs)
