"""Content-addressing helpers.

Chunk identity is derived purely from content so that re-ingesting the same
source is idempotent:

    source_id = sha256("<source_type>:<source_uri>")
    hash      = sha256(normalized_text)
    id        = sha256("<source_id>:<chunk_index>:<hash>")
"""

import hashlib


def sha256_hex(value: str) -> str:
    """Return the hex SHA-256 digest of the UTF-8 encoding of *value*."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def compute_source_id(source_type: str, source_uri: str) -> str:
    return sha256_hex(f"{source_type}:{source_uri}")


def compute_content_hash(normalized_text: str) -> str:
    return sha256_hex(normalized_text)


def compute_chunk_id(source_id: str, chunk_index: int, content_hash: str) -> str:
    return sha256_hex(f"{source_id}:{chunk_index}:{content_hash}")
