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

from sharedata.api.constants import DirIDs
from sharedata.api.errors import InvalidSharingTargetError
from sharedata.sharing.types import SharingScope


def parent_container(scope: SharingScope, object_id: str, local_parent_id: str) -> str:
    """Works out the directory a file or directory goes in at the recipients.

    For a sharing listing its objects, the listed objects go in the
    "shared with me" directory while the objects below them keep their parent.
    For a reference based sharing, everything goes in "shared with me".

    Args:
        scope: the scope of the sharing
        object_id: the id of the file or directory
        local_parent_id: the id of its parent directory on this node

    Returns:
        the id of the parent directory at the recipients

    Raises:
        InvalidSharingTargetError: if the root directory would be shared
    """
    if scope.is_reference_based:
        return DirIDs.SHARED_WITH_ME

    if object_id == DirIDs.ROOT:
        raise InvalidSharingTargetError("/ cannot be shared")

    if object_id in scope.values:
        return DirIDs.SHARED_WITH_ME

    return local_parent_id
