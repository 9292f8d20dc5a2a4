"""Tests for float32 BLOB encoding, cosine similarity and text-embedding migration."""

from __future__ import annotations

import json
import math

import numpy as np
import pytest

from clirag.db.repository import ChunkStore
from clirag.db.schema import initialize
from clirag.db.vectors import (
    cosine_similarity,
    decode_vector,
    dimension_of,
    encode_vector,
    migrate_text_embeddings,
)


# --- encode / decode ---

@pytest.mark.parametrize("dims", [1, 3, 384])
def test_encode_decode_preserves_values(dims):
    rng = np.random.default_rng(dims)
    vector = rng.standard_normal(dims).astype(np.float32).tolist()
    decoded = decode_vector(encode_vector(vector))
    assert decoded.shape == (dims,)
    assert np.array_equal(decoded, np.asarray(vector, dtype=np.float32))


@pytest.mark.parametrize("dims", [1, 3, 384])
def test_decode_encode_preserves_bytes(dims):
    blob = np.random.default_rng(dims).bytes(4 * dims)
    assert encode_vector(decode_vector(blob)) == blob


@pytest.mark.parametrize(
    "blob",
    [
        b"\x01\x00\xc0\x7f",  # quiet NaN with a payload
        b"\x01\x00\x80\x7f",  # signalling NaN
        b"\x00\x00\x80\x7f\x00\x00\x80\xff",  # +inf, -inf
    ],
)
def test_decode_encode_preserves_special_values(blob):
    assert encode_vector(decode_vector(blob)) == blob


def test_encode_is_little_endian_float32():
    assert encode_vector([1.0]) == b"\x00\x00\x80\x3f"


def test_dimension_of_blob():
    assert dimension_of(encode_vector([0.0] * 7)) == 7


def test_decode_rejects_truncated_blob():
    with pytest.raises(ValueError, match="multiple of 4"):
        decode_vector(b"\x00\x00\x80")


# --- cosine_similarity ---

def test_cosine_identical_vectors_is_one():
    assert cosine_similarity([0.3, 0.4, 0.5], [0.3, 0.4, 0.5]) == pytest.approx(1.0)


def test_cosine_opposite_vectors_is_minus_one():
    assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)


def test_cosine_orthogonal_is_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_is_symmetric():
    a, b = [0.2, 0.9, -0.1], [0.5, 0.1, 0.7]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_cosine_zero_vector_scores_zero():
    result = cosine_similarity([0.0, 0.0], [1.0, 1.0])
    assert result == 0.0
    assert not math.isnan(result)


def test_cosine_dimension_mismatch_scores_zero():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_cosine_accepts_decoded_arrays():
    stored = decode_vector(encode_vector([0.6, 0.8]))
    assert cosine_similarity([0.6, 0.8], stored) == pytest.approx(1.0, abs=1e-6)


# --- migrate_text_embeddings ---

def _insert_raw(conn, chunk_id: str, embedding) -> None:
    conn.execute(
        "INSERT INTO chunks (id, url, text, chunk_index, embedding) VALUES (?, ?, ?, ?, ?)",
        (chunk_id, "https://example.com", "text", 0, embedding),
    )
    conn.commit()


def test_migrate_text_embeddings_rewrites_json(tmp_db):
    _insert_raw(tmp_db, "a", json.dumps([0.5, 0.25]))

    assert migrate_text_embeddings(tmp_db) == 1

    row = tmp_db.execute("SELECT typeof(embedding) AS t, embedding FROM chunks").fetchone()
    assert row["t"] == "blob"
    assert decode_vector(row["embedding"]).tolist() == [0.5, 0.25]


def test_migrate_text_embeddings_skips_unparseable(tmp_db):
    _insert_raw(tmp_db, "a", "not json")
    assert migrate_text_embeddings(tmp_db) == 0


def test_migrate_text_embeddings_noop_for_blobs(tmp_db):
    _insert_raw(tmp_db, "a", encode_vector([1.0, 0.0]))
    assert migrate_text_embeddings(tmp_db) == 0


@pytest.mark.parametrize(
    "payload",
    [json.dumps(["a", "b"]), json.dumps({"x": 1}), json.dumps([[1.0], [2.0, 3.0]]), "[]", "7"],
)
def test_migrate_text_embeddings_skips_non_numeric(tmp_db, payload):
    _insert_raw(tmp_db, "a", payload)
    assert migrate_text_embeddings(tmp_db) == 0
    row = tmp_db.execute("SELECT embedding FROM chunks WHERE id = 'a'").fetchone()
    assert row["embedding"] == payload


def test_initialize_survives_non_numeric_embedding(tmp_db):
    _insert_raw(tmp_db, "bad", json.dumps(["a"]))
    tmp_db.execute(
        "INSERT INTO chunks (id, url, text, chunk_index, embedding) VALUES (?, ?, ?, ?, ?)",
        ("good", "https://example.com", "text", 1, json.dumps([1.0, 0.0])),
    )
    tmp_db.commit()

    initialize(tmp_db)

    rows = tmp_db.execute("SELECT id, typeof(embedding) FROM chunks").fetchall()
    kinds = {r[0]: r[1] for r in rows}
    assert kinds == {"bad": "text", "good": "blob"}


def test_unconverted_text_embedding_counts_as_missing(tmp_db):
    _insert_raw(tmp_db, "bad", json.dumps(["a"]))
    initialize(tmp_db)
    store = ChunkStore(tmp_db)

    assert store.count_missing_embeddings() == 1
    assert list(store.scan_embedded()) == []
    assert store.embedding_dimension() is None
    assert store.get_chunk("bad").embedding is None
