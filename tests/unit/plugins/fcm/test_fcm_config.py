"""Tests for the Firebase Cloud Messaging gateway configuration model."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from push_dispatch.plugins.fcm.config import FCMConfig


def test_defaults_use_application_default_credentials() -> None:
    config = FCMConfig()

    assert config.credentials_file is None
    assert config.project_id is None
    assert config.app_name == "push-dispatch"
    assert not config.validate_only


def test_existing_credentials_file_is_accepted(tmp_path: Path) -> None:
    key_file = tmp_path / "service-account.json"
    _ = key_file.write_text("{}", encoding="utf-8")

    config = FCMConfig(credentials_file=key_file)

    assert config.credentials_file == key_file


def test_missing_credentials_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="Credentials file does not exist"):
        _ = FCMConfig(credentials_file=tmp_path / "absent.json")


@pytest.mark.parametrize("base", ["http://app.example.com", "app.example.com", "https://"])
def test_web_link_base_must_be_absolute_https(base: str) -> None:
    with pytest.raises(ValidationError, match="absolute HTTPS URL"):
        _ = FCMConfig(web_link_base=base)


def test_web_link_base_is_trimmed() -> None:
    assert FCMConfig(web_link_base=" https://app.example.com ").web_link_base == "https://app.example.com"


def test_empty_project_id_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _ = FCMConfig(project_id="")
