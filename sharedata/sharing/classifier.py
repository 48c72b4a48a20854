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

"""Decides what has to be replayed at a recipient for a local change.

The decision is what keeps a master-master sharing from ping-ponging: a
recipient which already has what we have is left alone, so that the change it
would otherwise send back never happens.
"""

from typing import Sequence

from sharedata.sharing.references import missing_references
from sharedata.sharing.types import (
    ABSENT,
    Action,
    DirOrFile,
    DirOrFileSnapshot,
    DocReference,
    DocumentSnapshot,
    FileMeta,
    JsonDict,
    body_without_volatile_fields,
)


def classify_document(local: JsonDict, remote: DocumentSnapshot) -> Action:
    """Classifies a change to a generic document.

    Args:
        local: the local document
        remote: the recipient's copy of it

    Returns:
        CREATE, NO_OP when both bodies are the same but for their id and
        revision, or REPLACE_CONTENT.
    """
    if remote is ABSENT:
        return Action.CREATE

    if body_without_volatile_fields(local) == body_without_volatile_fields(remote):
        return Action.NO_OP

    return Action.REPLACE_CONTENT


def classify_file_or_dir(
    local: DirOrFile,
    remote: DirOrFileSnapshot,
    scope_refs: Sequence[DocReference] = (),
) -> Action:
    """Classifies a change to a file or a directory.

    The content of a file is compared first, then the name and tags, then
    the references. Directories have no content and start at the name.

    Args:
        local: the local file or directory
        remote: the recipient's copy of it
        scope_refs: the references the sharing is scoped by, if any

    Returns:
        the action to replay at the recipient
    """
    if remote is ABSENT:
        return Action.CREATE

    if isinstance(local, FileMeta):
        remote_md5sum = remote.md5sum if isinstance(remote, FileMeta) else None
        if local.md5sum != remote_md5sum:
            return Action.REPLACE_CONTENT

    # tags are compared in order
    if local.name != remote.name or list(local.tags) != list(remote.tags):
        return Action.PATCH_METADATA

    if missing_references(local.referenced_by, remote.referenced_by, scope_refs):
        return Action.UPDATE_REFERENCES_ONLY

    return Action.NO_OP
