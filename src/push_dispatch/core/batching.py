"""Order-preserving chunking of token streams."""

from __future__ import annotations

import itertools
from collections.abc import Iterable, Iterator
from typing import Final

__all__ = ["GATEWAY_BATCH_LIMIT", "TOPIC_MANAGEMENT_LIMIT", "chunk_count", "chunk_tokens"]

# Maximum tokens per multicast send accepted by the gateway
GATEWAY_BATCH_LIMIT: Final[int] = 500

# Maximum tokens per topic subscribe/unsubscribe call
TOPIC_MANAGEMENT_LIMIT: Final[int] = 1000


def chunk_tokens(tokens: Iterable[str], size: int = GATEWAY_BATCH_LIMIT) -> Iterator[tuple[str, ...]]:
    """Lazily split ``tokens`` into consecutive chunks of at most ``size``.

    Every token appears in exactly one chunk and input order is preserved.
    The input is consumed incrementally, so arbitrarily large enumerations
    never need to be materialised.

    Raises:
        ValueError: If size is not positive
    """
    if size < 1:
        msg = "chunk size must be >= 1"
        raise ValueError(msg)
    return itertools.batched(tokens, size)


def chunk_count(total: int, size: int = GATEWAY_BATCH_LIMIT) -> int:
    """Number of chunks ``chunk_tokens`` yields for ``total`` tokens."""
    if size < 1:
        msg = "chunk size must be >= 1"
        raise ValueError(msg)
    return -(-total // size)
