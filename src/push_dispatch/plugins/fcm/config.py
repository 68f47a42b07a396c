"""Firebase Cloud Messaging gateway configuration schema."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class FCMConfig(BaseModel):
    """Pydantic schema for the Firebase Cloud Messaging gateway."""

    credentials_file: Annotated[
        Path | None,
        Field(
            description=(
                "Service account JSON key file; when unset, Application Default "
                "Credentials are used"
            ),
        ),
    ] = None
    project_id: Annotated[
        str | None,
        Field(
            description="Firebase project ID (inferred from credentials when unset)",
            min_length=1,
        ),
    ] = None
    app_name: Annotated[
        str,
        Field(
            description="Name of the firebase_admin App instance used by this gateway",
            min_length=1,
        ),
    ] = "push-dispatch"
    web_link_base: Annotated[
        str | None,
        Field(
            description="HTTPS origin used to resolve relative web notification links",
        ),
    ] = None
    validate_only: Annotated[
        bool,
        Field(
            description="Ask FCM to validate messages without delivering them",
        ),
    ] = False

    @field_validator("credentials_file")
    @classmethod
    def validate_credentials_file(cls, value: Path | None) -> Path | None:
        """Require the service account key file to exist when configured."""
        if value is None:
            return None
        expanded = value.expanduser()
        if not expanded.is_file():
            msg = f"Credentials file does not exist: {expanded}"
            raise ValueError(msg)
        return expanded

    @field_validator("web_link_base")
    @classmethod
    def validate_web_link_base(cls, value: str | None) -> str | None:
        """Require an absolute HTTPS URL."""
        if value is None:
            return None
        cleaned = value.strip()
        parsed = urlparse(cleaned)
        if parsed.scheme.lower() != "https" or not parsed.netloc:
            msg = "web_link_base must be an absolute HTTPS URL"
            raise ValueError(msg)
        return cleaned
