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

# This file provides some classes for setting up (partially-populated)
# sharing servers; either as a full server, or as a partially-mocked
# one for testing.

import functools
import logging
from typing import Any, Callable, Optional, TypeVar, cast

from twisted.internet.interfaces import IReactorCore, IReactorTime

from sharedata.config._base import ConfigError
from sharedata.config.sharingserver import SharingServerConfig
from sharedata.http.client import HttpClient
from sharedata.sharing.dispatcher import SharingDispatcher
from sharedata.sharing.remote_state import RemoteStateFetcher
from sharedata.sharing.transport import RecipientClient
from sharedata.sharing.worker import SharingWorker
from sharedata.storage import DocumentStore, FileStore
from sharedata.storage.filesystem import FilesystemDocumentStore, FilesystemFileStore

logger = logging.getLogger(__name__)


T = TypeVar("T", bound=Callable[..., Any])


def cache_in_self(builder: T) -> T:
    """Wraps a function called e.g. `get_foo`, checking if `self.foo` exists and
    returning if so. If not, calls the given function and sets `self.foo` to it.

    Also ensures that dependency cycles throw an exception correctly, rather
    than overflowing the stack.
    """

    if not builder.__name__.startswith("get_"):
        raise Exception(
            "@cache_in_self can only be used on functions starting with `get_`"
        )

    # get_attr -> _attr
    depname = builder.__name__[len("get") :]

    building = [False]

    @functools.wraps(builder)
    def _get(self):
        try:
            return getattr(self, depname)
        except AttributeError:
            pass

        # Prevent cyclic dependencies from deadlocking
        if building[0]:
            raise ValueError("Cyclic dependency while building %s" % (depname,))

        building[0] = True
        try:
            dep = builder(self)
            setattr(self, depname, dep)
        finally:
            building[0] = False

        return dep

    # We cast here as we need to tell mypy that `_get` has the same signature as
    # `builder`.
    return cast(T, _get)


class SharingServer:
    """Holds the components replicating the shared objects.

    Dependencies are built lazily by the `get_<depname>` methods. Any of them
    can be given to the constructor instead, as `<depname>=...`, which is how
    the tests swap in mocks.

    Attributes:
        config: the configuration of the server
    """

    def __init__(
        self,
        config: SharingServerConfig,
        reactor: Optional[IReactorCore] = None,
        **kwargs: Any,
    ):
        if not reactor:
            from twisted.internet import reactor as _reactor

            reactor = cast(IReactorCore, _reactor)

        self._reactor = reactor
        self.config = config

        for depname, dep in kwargs.items():
            setattr(self, "_" + depname, dep)

    def get_reactor(self) -> IReactorTime:
        return cast(IReactorTime, self._reactor)

    @cache_in_self
    def get_http_client(self) -> HttpClient:
        return HttpClient(self)

    @cache_in_self
    def get_recipient_client(self) -> RecipientClient:
        return RecipientClient(self)

    @cache_in_self
    def get_remote_state_fetcher(self) -> RemoteStateFetcher:
        return RemoteStateFetcher(self)

    @cache_in_self
    def get_document_store(self) -> DocumentStore:
        return FilesystemDocumentStore(self._storage_path())

    @cache_in_self
    def get_file_store(self) -> FileStore:
        return FilesystemFileStore(self._storage_path())

    @cache_in_self
    def get_sharing_dispatcher(self) -> SharingDispatcher:
        return SharingDispatcher(self)

    @cache_in_self
    def get_sharing_worker(self) -> SharingWorker:
        return SharingWorker(self)

    def _storage_path(self) -> str:
        path = self.config.sharing.storage_path
        if not path:
            raise ConfigError(
                "must be set to read local objects", ("sharing", "storage_path")
            )
        return path
