"""Domain models for Fitbit credentials."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class Credential:
    """Stored Fitbit OAuth tokens for an owner."""

    owner_id: UUID
    fitbit_user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenGrant:
    """Token payload returned by the Fitbit token endpoint."""

    access_token: str
    refresh_token: str
    fitbit_user_id: str
    expires_in: int
