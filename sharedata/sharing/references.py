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

"""Works out which "referenced_by" links matter to a sharing."""

import logging
from typing import Iterable, List, Sequence

from sharedata.api.constants import REFERENCE_SEPARATOR
from sharedata.sharing.types import DocReference, SharingScope

logger = logging.getLogger(__name__)


def parse_shared_references(values: Iterable[str]) -> List[DocReference]:
    """Parses the values of a "referenced_by" sharing.

    Each value is of the form "doctype/id". Values which are not are skipped.
    """
    refs = []
    for value in values:
        parts = value.split(REFERENCE_SEPARATOR)
        if len(parts) != 2:
            logger.debug("Ignoring malformed shared reference %r", value)
            continue
        refs.append(DocReference(type=parts[0], id=parts[1]))
    return refs


def shared_references(scope: SharingScope) -> List[DocReference]:
    """Returns the references a sharing is scoped by, which is nothing unless
    it is reference based.
    """
    if not scope.is_reference_based:
        return []
    return parse_shared_references(scope.values)


def relevant_references(
    all_refs: Iterable[DocReference], scope_refs: Sequence[DocReference]
) -> List[DocReference]:
    """Keeps the references which concern the sharing.

    A reference is kept when its id is the id of one of the shared references:
    the type is not compared.

    Args:
        all_refs: the references of a file
        scope_refs: the references the sharing is scoped by

    Returns:
        the kept references, in the order of `all_refs`. Duplicates are kept.
    """
    shared_ids = {ref.id for ref in scope_refs}
    return [ref for ref in all_refs if ref.id in shared_ids]


def missing_references(
    local: Iterable[DocReference],
    remote: Iterable[DocReference],
    scope_refs: Sequence[DocReference],
) -> List[DocReference]:
    """Returns the relevant references the recipient's copy of a file lacks.

    Only additions are looked for, and only when the local copy has more
    relevant references than the remote one: a reference swapped for another
    one, or removed, is not reported.

    Args:
        local: the references of the local file
        remote: the references of the recipient's copy
        scope_refs: the references the sharing is scoped by

    Returns:
        the missing references, in local order. Empty if there are none.
    """
    local_refs = relevant_references(local, scope_refs)
    remote_refs = relevant_references(remote, scope_refs)

    if len(local_refs) <= len(remote_refs):
        return []

    remote_keys = {(ref.id, ref.type) for ref in remote_refs}
    return [ref for ref in local_refs if (ref.id, ref.type) not in remote_keys]
