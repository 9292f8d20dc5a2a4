"""Fixed-width binary vector encoding + cosine similarity.

Embeddings are stored as raw little-endian float32 BLOBs so that every query
scan decodes each stored vector in O(d) with no text parsing. Older databases
stored embeddings as JSON text; migrate_text_embeddings() rewrites them.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence

import numpy as np

logger = logging.getLogger(__name__)

_DTYPE = np.dtype("<f4")


def encode_vector(vector: Sequence[float] | np.ndarray) -> bytes:
    """Pack *vector* as little-endian float32 bytes."""
    return np.asarray(vector, dtype=_DTYPE).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Unpack a BLOB written by encode_vector().

    Raises:
        ValueError: If the blob length is not a multiple of 4 bytes.
    """
    if len(blob) % _DTYPE.itemsize:
        raise ValueError(
            f"Embedding blob length {len(blob)} is not a multiple of {_DTYPE.itemsize}"
        )
    return np.frombuffer(blob, dtype=_DTYPE)


def dimension_of(blob: bytes) -> int:
    """Number of float32 components stored in *blob*."""
    return len(blob) // _DTYPE.itemsize


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity in [-1, 1].

    Mismatched dimensions and zero vectors score 0.0 (never NaN).
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    sim = float(np.dot(va, vb) / denom)
    return max(-1.0, min(1.0, sim))


def migrate_text_embeddings(conn: sqlite3.Connection) -> int:
    """Rewrite JSON-text embeddings as float32 BLOBs. Returns rows migrated.

    Runs in a single transaction; rows that are not a flat list of numbers
    are left untouched.
    """
    rows = conn.execute(
        "SELECT id, embedding FROM chunks "
        "WHERE embedding IS NOT NULL AND typeof(embedding) = 'text'"
    ).fetchall()
    if not rows:
        return 0

    migrated = 0
    with conn:
        for row in rows:
            try:
                vector = np.asarray(json.loads(row["embedding"]), dtype=_DTYPE)
                if vector.ndim != 1 or vector.size == 0:
                    raise ValueError("expected a non-empty flat list of numbers")
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping unparseable embedding for chunk %s: %s", row["id"], exc)
                continue
            conn.execute(
                "UPDATE chunks SET embedding = ? WHERE id = ?",
                (encode_vector(vector), row["id"]),
            )
            migrated += 1
    logger.info("Migrated %d text embeddings to binary format", migrated)
    return migrated
