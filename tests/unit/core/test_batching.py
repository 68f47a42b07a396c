"""Tests for token chunking."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from push_dispatch.core.batching import GATEWAY_BATCH_LIMIT, chunk_count, chunk_tokens
from tests.fixtures.fakes import make_tokens


def test_chunks_preserve_order_and_sizes() -> None:
    tokens = make_tokens(1200)

    chunks = list(chunk_tokens(tokens))

    assert [len(chunk) for chunk in chunks] == [500, 500, 200]
    assert [token for chunk in chunks for token in chunk] == tokens


def test_exact_multiple_has_no_empty_trailing_chunk() -> None:
    chunks = list(chunk_tokens(make_tokens(1000)))

    assert [len(chunk) for chunk in chunks] == [GATEWAY_BATCH_LIMIT, GATEWAY_BATCH_LIMIT]


def test_empty_input_yields_no_chunks() -> None:
    assert list(chunk_tokens([])) == []
    assert chunk_count(0) == 0


def test_chunking_consumes_iterators_lazily() -> None:
    consumed: list[str] = []

    def stream() -> Iterator[str]:
        for token in make_tokens(10):
            consumed.append(token)
            yield token

    chunks = chunk_tokens(stream(), 3)
    first = next(chunks)

    assert len(first) == 3
    assert len(consumed) == 3


@pytest.mark.parametrize(
    ("total", "size", "expected"),
    [(1, 500, 1), (500, 500, 1), (501, 500, 2), (7, 3, 3)],
)
def test_chunk_count(total: int, size: int, expected: int) -> None:
    assert chunk_count(total, size) == expected


def test_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        _ = chunk_tokens(["a"], 0)
