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

"""Contains constants shared with the recipients' sharing API."""

from typing_extensions import Final


class Doctypes:
    """Well-known document types."""

    FILES: Final = "io.cozy.files"


class FileTypes:
    """Values of the `type` attribute of io.cozy.files documents."""

    FILE: Final = "file"
    DIRECTORY: Final = "directory"


class DirIDs:
    """Identifiers of the directories every node has."""

    ROOT: Final = "io.cozy.files.root-dir"
    SHARED_WITH_ME: Final = "io.cozy.files.shared-with-me-dir"


class Selectors:
    """Selectors a sharing scope can be based on."""

    REFERENCED_BY: Final = "referenced_by"


class QueryParams:
    """Query parameters understood by the recipients' sharing endpoints."""

    TYPE: Final = "type"
    NAME: Final = "name"
    EXECUTABLE: Final = "executable"
    CREATED_AT: Final = "created_at"
    UPDATED_AT: Final = "updated_at"
    REFERENCED_BY: Final = "referenced_by"
    DIR_ID: Final = "dir_id"
    TAGS: Final = "tags"
    REV: Final = "rev"


class SharingEvents:
    """The local mutations a sharing job can be about."""

    CREATED: Final = "created"
    UPDATED: Final = "updated"
    DELETED: Final = "deleted"
    REFERENCES_REMOVED: Final = "references_removed"
    LIST: Final = (CREATED, UPDATED, DELETED, REFERENCES_REMOVED)


# Separates the doctype from the id in the values of a "referenced_by" scope,
# eg "io.cozy.photos.albums/123".
REFERENCE_SEPARATOR = "/"

# Separates the tags of a directory when they are sent as a query parameter.
TAG_SEPARATOR = ","

JSONAPI_CONTENT_TYPE = "application/vnd.api+json"
JSON_CONTENT_TYPE = "application/json"

# the name the sharing worker is registered under in the job system
SHARE_DATA_WORKER = "sharedata"
