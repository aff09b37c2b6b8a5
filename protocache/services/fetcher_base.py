"""Fetch collaborator interface."""

from __future__ import annotations

import abc

from protocache.models import FetchParams
from protocache.results import FetchResult


class PrototypeFetcher(abc.ABC):
    """Interface for pulling one page of prototypes from upstream."""

    @abc.abstractmethod
    async def fetch_page(self, params: FetchParams) -> FetchResult:
        """Return raw records for ``params`` or a classified failure."""

    async def aclose(self) -> None:
        """Optional hook for graceful shutdown."""

        return None
