"""Contract tests run against every TokenRegistry implementation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from push_dispatch.core.sqlite_registry import SQLiteTokenRegistry
from push_dispatch.exceptions import TokenNotFoundError
from push_dispatch.types import Platform, TokenRegistry
from tests.fixtures.fakes import make_tokens


class TestUpsert:
    """Registration is idempotent and reactivates tokens."""

    def test_new_token_is_active(self, registry: TokenRegistry) -> None:
        record = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)

        assert record.active
        assert record.recipient_id == "alice"
        assert record.platform is Platform.ANDROID
        assert record.created_at == record.updated_at

    def test_repeated_upsert_keeps_a_single_record(self, registry: TokenRegistry) -> None:
        first = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)
        second = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)

        assert len(registry) == 1
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at

    def test_upsert_reactivates_and_updates_platform(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)
        _ = registry.deactivate("token-A-abcdefgh")

        record = registry.upsert("alice", "token-A-abcdefgh", Platform.WEB)

        assert record.active
        assert record.platform is Platform.WEB
        assert registry.active_tokens_for("alice") == ("token-A-abcdefgh",)

    def test_upsert_moves_token_to_new_recipient(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.IOS)

        _ = registry.upsert("bob", "token-A-abcdefgh", Platform.IOS)

        assert registry.active_tokens_for("alice") == ()
        assert registry.active_tokens_for("bob") == ("token-A-abcdefgh",)
        assert len(registry) == 1


class TestRemoveAndDeactivate:
    def test_remove_deletes_owned_token(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.WEB)

        registry.remove("alice", "token-A-abcdefgh")

        assert registry.get("token-A-abcdefgh") is None
        assert registry.tokens_for("alice") == ()

    def test_remove_other_recipients_token_raises_and_changes_nothing(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.WEB)

        with pytest.raises(TokenNotFoundError) as exc_info:
            registry.remove("bob", "token-A-abcdefgh")

        assert exc_info.value.recipient_id == "bob"
        assert registry.active_tokens_for("alice") == ("token-A-abcdefgh",)

    def test_remove_unknown_token_raises(self, registry: TokenRegistry) -> None:
        with pytest.raises(TokenNotFoundError):
            registry.remove("alice", "missing-token-000")

    def test_deactivate_is_idempotent(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)

        assert registry.deactivate("token-A-abcdefgh")
        assert registry.deactivate("token-A-abcdefgh")
        assert not registry.deactivate("missing-token-000")

        record = registry.get("token-A-abcdefgh")
        assert record is not None
        assert not record.active


class TestQueries:
    """Lookups preserve registration order and honour filters."""

    def test_active_tokens_for_preserves_order_and_skips_inactive(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)
        _ = registry.upsert("alice", "token-B-abcdefgh", Platform.WEB)
        _ = registry.upsert("alice", "token-C-abcdefgh", Platform.IOS)
        _ = registry.deactivate("token-B-abcdefgh")

        assert registry.active_tokens_for("alice") == ("token-A-abcdefgh", "token-C-abcdefgh")
        assert [record.token for record in registry.tokens_for("alice")] == [
            "token-A-abcdefgh",
            "token-B-abcdefgh",
            "token-C-abcdefgh",
        ]

    def test_platform_filter(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)
        _ = registry.upsert("alice", "token-B-abcdefgh", Platform.WEB)
        _ = registry.upsert("alice", "token-C-abcdefgh", Platform.WEB)

        assert registry.active_tokens_for("alice", Platform.WEB) == ("token-B-abcdefgh", "token-C-abcdefgh")
        assert registry.active_tokens_for("alice", Platform.IOS) == ()

    def test_unknown_recipient_has_no_tokens(self, registry: TokenRegistry) -> None:
        assert registry.active_tokens_for("nobody") == ()
        assert registry.tokens_for("nobody") == ()

    def test_iter_active_tokens_spans_pages_in_order(self, registry: TokenRegistry) -> None:
        tokens = make_tokens(30)
        for index, token in enumerate(tokens):
            _ = registry.upsert(f"user-{index % 4}", token, Platform.ANDROID)
        _ = registry.deactivate(tokens[3])
        _ = registry.deactivate(tokens[20])

        expected = [token for token in tokens if token not in {tokens[3], tokens[20]}]

        assert list(registry.iter_active_tokens()) == expected
        assert registry.count_active() == 28

    def test_iter_active_tokens_is_lazy(self, registry: TokenRegistry) -> None:
        for token in make_tokens(3):
            _ = registry.upsert("alice", token, Platform.WEB)

        iterator = registry.iter_active_tokens()

        assert next(iterator) == make_tokens(3)[0]


class TestPrune:
    def test_prune_removes_only_old_inactive_tokens(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)
        _ = registry.upsert("alice", "token-B-abcdefgh", Platform.ANDROID)
        _ = registry.deactivate("token-A-abcdefgh")
        cutoff = datetime(2030, 1, 1, tzinfo=UTC)

        assert registry.prune_inactive(cutoff) == 1
        assert registry.get("token-A-abcdefgh") is None
        assert registry.get("token-B-abcdefgh") is not None

    def test_prune_keeps_recently_deactivated_tokens(self, registry: TokenRegistry) -> None:
        _ = registry.upsert("alice", "token-A-abcdefgh", Platform.ANDROID)
        _ = registry.deactivate("token-A-abcdefgh")
        cutoff = datetime(2024, 1, 1, tzinfo=UTC) - timedelta(days=1)

        assert registry.prune_inactive(cutoff) == 0
        assert len(registry) == 1


def test_sqlite_registry_persists_across_connections(tmp_path: Path) -> None:
    database = tmp_path / "nested" / "tokens.db"
    with SQLiteTokenRegistry(database) as first:
        _ = first.upsert("alice", "token-A-abcdefgh", Platform.IOS)

    with SQLiteTokenRegistry(database) as second:
        record = second.get("token-A-abcdefgh")

    assert record is not None
    assert record.platform is Platform.IOS
    assert record.created_at.tzinfo is not None


def test_sqlite_registry_rejects_invalid_page_size() -> None:
    with pytest.raises(ValueError):
        _ = SQLiteTokenRegistry(page_size=0)
