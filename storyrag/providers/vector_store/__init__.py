from storyrag.providers.vector_store.chromadb_chunk_store import ChromaDBChunkStore

__all__ = ["ChromaDBChunkStore"]
