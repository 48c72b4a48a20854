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

"""The interfaces of the local stores the objects to share are read from."""

from typing import BinaryIO, Optional

from typing_extensions import Protocol

from sharedata.sharing.types import DirOrFile, FileMeta, JsonDict


class DocumentStore(Protocol):
    """Where the generic documents live."""

    async def get_doc(self, doctype: str, doc_id: str) -> JsonDict:
        """Reads a document.

        Returns:
            the document, including its `_id` and `_rev`

        Raises:
            NotFoundError: if there is no such document
        """


class FileStore(Protocol):
    """Where the files and directories live."""

    async def get_dir_or_file(self, file_id: str) -> Optional[DirOrFile]:
        """Reads the metadata of a file or directory.

        Returns:
            the metadata, or None if there is no such file or directory
        """

    def open_content(self, file: FileMeta) -> BinaryIO:
        """Opens the content of a file for reading. The caller closes it.

        Raises:
            OSError: if the content cannot be opened
        """
