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

"""Local stores kept in a directory:

    <root>/data/<doctype>/<id>.json   generic documents
    <root>/files/<id>.json            metadata of files and directories
    <root>/files/<id>.content         content of files
"""

import logging
import os
from typing import Any, BinaryIO, Optional

from sharedata.api.constants import FileTypes
from sharedata.api.errors import InvalidLocalObjectError, NotFoundError
from sharedata.sharing.types import (
    DirMeta,
    DirOrFile,
    DocReference,
    FileMeta,
    JsonDict,
)
from sharedata.util import json_decoder, parse_rfc3339

logger = logging.getLogger(__name__)


def _check_path_segment(segment: str) -> str:
    if not segment or segment in (".", "..") or os.sep in segment:
        raise NotFoundError("Invalid id %r" % (segment,))
    return segment


def _read_json(path: str) -> Any:
    with open(path, "rb") as f:
        return json_decoder.decode(f.read().decode("utf-8"))


class FilesystemDocumentStore:
    """Reads the generic documents under `<root>/data`."""

    def __init__(self, root: str):
        self.base_directory = os.path.join(root, "data")

    def __str__(self) -> str:
        return "FilesystemDocumentStore[%s]" % (self.base_directory,)

    async def get_doc(self, doctype: str, doc_id: str) -> JsonDict:
        path = os.path.join(
            self.base_directory,
            _check_path_segment(doctype),
            _check_path_segment(doc_id) + ".json",
        )
        try:
            doc = _read_json(path)
        except FileNotFoundError:
            raise NotFoundError("No document %s/%s" % (doctype, doc_id))
        except ValueError as e:
            raise InvalidLocalObjectError("%s is not valid JSON: %s" % (path, e)) from e

        if not isinstance(doc, dict):
            raise InvalidLocalObjectError("%s does not hold a JSON object" % (path,))

        doc.setdefault("_id", doc_id)
        return doc


class FilesystemFileStore:
    """Reads the files and directories under `<root>/files`."""

    def __init__(self, root: str):
        self.base_directory = os.path.join(root, "files")

    def __str__(self) -> str:
        return "FilesystemFileStore[%s]" % (self.base_directory,)

    async def get_dir_or_file(self, file_id: str) -> Optional[DirOrFile]:
        path = os.path.join(self.base_directory, _check_path_segment(file_id) + ".json")
        try:
            attrs = _read_json(path)
        except FileNotFoundError:
            return None
        except ValueError as e:
            raise InvalidLocalObjectError("%s is not valid JSON: %s" % (path, e)) from e

        try:
            if not isinstance(attrs, dict):
                raise ValueError("not a JSON object")
            return dir_or_file_from_attributes(file_id, attrs)
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidLocalObjectError("%s is invalid: %s" % (path, e)) from e

    def open_content(self, file: FileMeta) -> BinaryIO:
        path = os.path.join(
            self.base_directory, _check_path_segment(file.id) + ".content"
        )
        logger.debug("Opening content of %s at %s", file.id, path)
        return open(path, "rb")


def dir_or_file_from_attributes(file_id: str, attrs: JsonDict) -> DirOrFile:
    """Builds the metadata of a local file or directory from its JSON form.

    Raises:
        ValueError: if the attributes are not those of a file or directory
    """
    if not isinstance(attrs.get("name"), str):
        raise ValueError("%s has no name" % (file_id,))

    refs = tuple(
        DocReference(type=ref["type"], id=ref["id"])
        for ref in attrs.get("referenced_by") or []
    )
    created_at = attrs.get("created_at")
    updated_at = attrs.get("updated_at")

    common = {
        "id": file_id,
        "rev": attrs.get("_rev", ""),
        "name": attrs["name"],
        "dir_id": attrs.get("dir_id", ""),
        "tags": attrs.get("tags") or (),
        "referenced_by": refs,
        "created_at": parse_rfc3339(created_at) if created_at else None,
        "updated_at": parse_rfc3339(updated_at) if updated_at else None,
    }

    file_type = attrs.get("type")
    if file_type == FileTypes.DIRECTORY:
        return DirMeta(**common)
    if file_type == FileTypes.FILE:
        return FileMeta(
            mime=attrs.get("mime", "application/octet-stream"),
            size=int(attrs.get("size", 0)),
            md5sum=attrs.get("md5sum", ""),
            executable=bool(attrs.get("executable", False)),
            **common,
        )
    raise ValueError("Unknown type %r for %s" % (file_type, file_id))
