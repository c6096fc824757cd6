"""Abstract base class for the dual-indexed chunk store.

The store holds one table of chunk rows with two indexes over it: a dense
vector index (for :meth:`IChunkStore.vector_search`) and a lexical index
(for :meth:`IChunkStore.full_text_search`).  The table is created lazily
on the first upsert, so "connected but no table yet" is a valid empty state.

**Filter syntax** (``filter`` argument of both search methods): a flat dict
of metadata field to a str / int / float / bool value, combined with AND
and compared for equality, e.g. ``{"language": "vi",
"paragraph_content_type": "translated"}``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Union

from storyrag.models.rag import Chunk, IndexConfig, StoredChunk

FilterValue = Union[str, int, float, bool]


# Concrete implementation: ChromaDBChunkStore (storyrag/providers/vector_store/)
class IChunkStore(ABC):
    """Contract for chunk persistence and retrieval.

    All methods are async so blocking backends can be moved off the event
    loop.  Searching before :meth:`connect`, or before the table exists,
    raises :class:`~storyrag.utils.errors.ConfigurationError`.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend and the chunk table, if it already exists."""

    @abstractmethod
    async def ensure_indexes(self, config: IndexConfig) -> None:
        """Create the configured indexes if they do not exist yet.

        Idempotent.  When the table does not exist yet the request is
        remembered and applied once the first upsert creates it.
        """

    @abstractmethod
    async def upsert_chunks(self, rows: list[Chunk]) -> int:
        """Write *rows*, creating the table on the first call.

        Every row is validated before anything is written.

        Returns
        -------
        int
            Number of rows written.

        Raises
        ------
        storyrag.utils.errors.ValidationError
            If any row has an empty ``id``, ``text`` or ``vector``, or the
            vectors disagree in dimension.
        """

    @abstractmethod
    async def vector_search(
        self,
        vector: list[float],
        limit: int,
        filter: dict[str, FilterValue] | None = None,
    ) -> list[StoredChunk]:
        """Return up to *limit* rows nearest to *vector*, closest first."""

    @abstractmethod
    async def full_text_search(
        self,
        query: str,
        limit: int,
        fts_columns: list[str] | None = None,
        filter: dict[str, FilterValue] | None = None,
    ) -> list[StoredChunk]:
        """Return up to *limit* rows matching *query* lexically, best first."""

    @abstractmethod
    async def count(self) -> int:
        """Number of rows in the table (0 when it does not exist)."""

    @property
    @abstractmethod
    def table_exists(self) -> bool:
        """``True`` once the chunk table has been opened or created."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
