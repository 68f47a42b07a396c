"""Tests for the Firebase gateway with the firebase_admin SDK patched out."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from push_dispatch.core.builder import build_message
from push_dispatch.exceptions import TransportError
from push_dispatch.plugins.fcm.config import FCMConfig
from push_dispatch.plugins.fcm.gateway import FirebaseGateway, create_gateway
from push_dispatch.types import (
    DeliveryGateway,
    MessageKind,
    NotificationIntent,
    OutcomeStatus,
    PlatformMessage,
    TokenTarget,
    TopicTarget,
)

MESSAGE: PlatformMessage = build_message(NotificationIntent(title="Hi", body="there"), MessageKind.GENERIC)


@pytest.fixture
def gateway() -> FirebaseGateway:
    # Placeholder app object; firebase_admin is never initialized in these tests
    placeholder_app: Any = object()
    return FirebaseGateway(config=FCMConfig(validate_only=True), app=placeholder_app)


class TestSendToTarget:
    @pytest.mark.asyncio
    async def test_token_delivery_passes_dry_run_flag(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seen: list[tuple[messaging.Message, bool]] = []

        def fake_send(message: messaging.Message, dry_run: bool = False, app: object = None) -> str:
            seen.append((message, dry_run))
            return "projects/demo/messages/1"

        monkeypatch.setattr(messaging, "send", fake_send)

        outcome = await gateway.send_to_target(MESSAGE, TokenTarget("token-A-abcdefgh"))

        assert outcome.status is OutcomeStatus.DELIVERED
        assert outcome.message_id == "projects/demo/messages/1"
        assert seen[0][0].token == "token-A-abcdefgh"
        assert seen[0][1] is True

    @pytest.mark.asyncio
    async def test_unregistered_token_becomes_invalid_outcome(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_send(message: messaging.Message, dry_run: bool = False, app: object = None) -> str:
            raise messaging.UnregisteredError("Requested entity was not found.")

        monkeypatch.setattr(messaging, "send", fake_send)

        outcome = await gateway.send_to_target(MESSAGE, TokenTarget("token-A-abcdefgh"))

        assert outcome.status is OutcomeStatus.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_unavailable_becomes_transient_outcome(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_send(message: messaging.Message, dry_run: bool = False, app: object = None) -> str:
            raise firebase_exceptions.UnavailableError("Service unavailable")

        monkeypatch.setattr(messaging, "send", fake_send)

        outcome = await gateway.send_to_target(MESSAGE, TopicTarget("news"))

        assert outcome.status is OutcomeStatus.TRANSIENT_FAILURE
        assert outcome.target == "news"

    @pytest.mark.asyncio
    async def test_permission_denied_raises_transport_error(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_send(message: messaging.Message, dry_run: bool = False, app: object = None) -> str:
            raise firebase_exceptions.PermissionDeniedError("Bearer ya29.secret rejected")

        monkeypatch.setattr(messaging, "send", fake_send)

        with pytest.raises(TransportError) as exc_info:
            _ = await gateway.send_to_target(MESSAGE, TokenTarget("token-A-abcdefgh"))

        assert "ya29.secret" not in str(exc_info.value)


class TestSendToBatch:
    """Multicast responses map back to tokens by position."""

    @pytest.mark.asyncio
    async def test_outcomes_follow_token_order(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_multicast(
            message: messaging.MulticastMessage,
            dry_run: bool = False,
            app: object = None,
        ) -> messaging.BatchResponse:
            assert message.tokens == ["a-token-000000", "b-token-000000", "c-token-000000"]
            return messaging.BatchResponse(
                [
                    messaging.SendResponse({"name": "m-1"}, None),
                    messaging.SendResponse(None, messaging.UnregisteredError("gone")),
                    messaging.SendResponse(None, firebase_exceptions.InternalError("oops")),
                ]
            )

        monkeypatch.setattr(messaging, "send_each_for_multicast", fake_multicast)

        tokens = ["a-token-000000", "b-token-000000", "c-token-000000"]

        outcomes = await gateway.send_to_batch(MESSAGE, tokens)

        assert [outcome.status for outcome in outcomes] == [
            OutcomeStatus.DELIVERED,
            OutcomeStatus.INVALID_TOKEN,
            OutcomeStatus.TRANSIENT_FAILURE,
        ]
        assert [outcome.target for outcome in outcomes] == tokens

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_call(self, gateway: FirebaseGateway) -> None:
        assert await gateway.send_to_batch(MESSAGE, []) == []

    @pytest.mark.asyncio
    async def test_oversized_batch_is_rejected(self, gateway: FirebaseGateway) -> None:
        tokens = [f"token-{index}" for index in range(501)]

        with pytest.raises(ValueError, match="at most 500"):
            _ = await gateway.send_to_batch(MESSAGE, tokens)

    @pytest.mark.asyncio
    async def test_whole_call_failure_raises_transport_error(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_multicast(
            message: messaging.MulticastMessage,
            dry_run: bool = False,
            app: object = None,
        ) -> messaging.BatchResponse:
            raise firebase_exceptions.UnauthenticatedError("invalid credentials")

        monkeypatch.setattr(messaging, "send_each_for_multicast", fake_multicast)

        with pytest.raises(TransportError, match="FCM multicast failed"):
            _ = await gateway.send_to_batch(MESSAGE, ["a-token-000000"])

    @pytest.mark.asyncio
    async def test_response_count_mismatch_raises_transport_error(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_multicast(
            message: messaging.MulticastMessage,
            dry_run: bool = False,
            app: object = None,
        ) -> messaging.BatchResponse:
            return messaging.BatchResponse([messaging.SendResponse({"name": "m-1"}, None)])

        monkeypatch.setattr(messaging, "send_each_for_multicast", fake_multicast)

        with pytest.raises(TransportError, match="1 responses for 2 tokens"):
            _ = await gateway.send_to_batch(MESSAGE, ["a-token-000000", "b-token-000000"])


class TestTopicManagement:
    @pytest.mark.asyncio
    async def test_subscribe_maps_errors_by_index(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        calls: list[tuple[list[str], str]] = []

        def fake_subscribe(
            tokens: list[str], topic: str, app: object = None
        ) -> messaging.TopicManagementResponse:
            calls.append((tokens, topic))
            return messaging.TopicManagementResponse({"results": [{}, {"error": "INVALID_ARGUMENT"}]})

        monkeypatch.setattr(messaging, "subscribe_to_topic", fake_subscribe)

        outcomes = await gateway.subscribe_topic(["t0-token-0000", "t1-token-0000"], "news")

        assert calls == [(["t0-token-0000", "t1-token-0000"], "news")]
        statuses = [outcome.status for outcome in outcomes]
        assert statuses == [OutcomeStatus.DELIVERED, OutcomeStatus.INVALID_TOKEN]

    @pytest.mark.asyncio
    async def test_unsubscribe_failure_raises_transport_error(
        self,
        gateway: FirebaseGateway,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def fake_unsubscribe(
            tokens: list[str], topic: str, app: object = None
        ) -> messaging.TopicManagementResponse:
            raise firebase_exceptions.UnavailableError("Service unavailable")

        monkeypatch.setattr(messaging, "unsubscribe_from_topic", fake_unsubscribe)

        with pytest.raises(TransportError, match="topic management"):
            _ = await gateway.unsubscribe_topic(["t0-token-0000"], "news")

    @pytest.mark.asyncio
    async def test_oversized_topic_request_is_rejected(self, gateway: FirebaseGateway) -> None:
        tokens: Sequence[str] = [f"token-{index}" for index in range(1001)]

        with pytest.raises(ValueError, match="at most 1000"):
            _ = await gateway.subscribe_topic(tokens, "news")


@pytest.mark.asyncio
async def test_app_initialization_failure_is_a_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_initialize(config: FCMConfig) -> object:
        msg = "Could not automatically determine credentials"
        raise ValueError(msg)

    monkeypatch.setattr("push_dispatch.plugins.fcm.gateway.initialize_firebase_app", broken_initialize)
    gateway = create_gateway(FCMConfig())

    with pytest.raises(TransportError, match="Failed to initialize Firebase app"):
        _ = await gateway.send_to_target(MESSAGE, TopicTarget("news"))


def test_factory_returns_delivery_gateway() -> None:
    gateway = create_gateway(FCMConfig(project_id="demo-project"))

    assert isinstance(gateway, DeliveryGateway)
    assert gateway.app is None
