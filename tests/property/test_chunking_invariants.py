"""Property-based tests for token chunking."""

from __future__ import annotations

import itertools

from hypothesis import given, strategies as st

from push_dispatch.core.batching import GATEWAY_BATCH_LIMIT, chunk_count, chunk_tokens

tokens_strategy = st.lists(st.text(min_size=1, max_size=12), max_size=300)
size_strategy = st.integers(min_value=1, max_value=GATEWAY_BATCH_LIMIT)


@given(tokens_strategy, size_strategy)
def test_concatenated_chunks_equal_input(tokens: list[str], size: int) -> None:
    """Property: Chunking neither drops, duplicates nor reorders tokens."""
    chunks = list(chunk_tokens(tokens, size))

    assert list(itertools.chain.from_iterable(chunks)) == tokens


@given(tokens_strategy, size_strategy)
def test_only_last_chunk_may_be_short(tokens: list[str], size: int) -> None:
    chunks = list(chunk_tokens(tokens, size))

    assert all(len(chunk) == size for chunk in chunks[:-1])
    assert all(0 < len(chunk) <= size for chunk in chunks)


@given(tokens_strategy, size_strategy)
def test_chunk_count_matches_chunks_yielded(tokens: list[str], size: int) -> None:
    assert chunk_count(len(tokens), size) == len(list(chunk_tokens(tokens, size)))


@given(st.integers(min_value=0, max_value=5000), size_strategy)
def test_chunk_count_is_ceiling_division(total: int, size: int) -> None:
    count = chunk_count(total, size)

    assert count * size >= total
    assert (count - 1) * size < total or count == 0


@given(size_strategy)
def test_generators_are_consumed_lazily(size: int) -> None:
    """Property: The first chunk is available without exhausting the source."""
    source = (f"token-{index}" for index in itertools.count())

    first = next(chunk_tokens(source, size))

    assert first == tuple(f"token-{index}" for index in range(size))
    assert next(source) == f"token-{size}"
