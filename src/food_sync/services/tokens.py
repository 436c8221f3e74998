"""Fitbit access token lifecycle."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from food_sync.adapters.fitbit_client import FitbitClient
from food_sync.domain.credentials import Credential, TokenGrant
from food_sync.domain.errors import LocalStoreError, TokenInvalidError

_logger = logging.getLogger(__name__)


class CredentialRepository(Protocol):
    """Persistence interface for Fitbit credentials."""

    def get_credential(self, owner_id: UUID) -> Credential | None:
        """Return the stored credential for an owner, if any."""

    def save_credential(self, credential: Credential) -> None:
        """Insert or replace the credential for its owner."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class TokenService:
    """Keeps Fitbit access tokens fresh and persisted."""

    client: FitbitClient
    repository: CredentialRepository
    refresh_margin: timedelta = timedelta(hours=1)
    clock: Callable[[], datetime] = _utc_now
    _in_flight: dict[UUID, "asyncio.Future[str]"] = field(
        default_factory=dict, init=False, repr=False
    )

    async def ensure_fresh_token(self, credential: Credential | None) -> str:
        """Return a usable access token, refreshing it when close to expiry."""
        if credential is None:
            raise TokenInvalidError("Fitbit account not connected")
        if credential.expires_at > self.clock() + self.refresh_margin:
            return credential.access_token

        pending = self._in_flight.get(credential.owner_id)
        if pending is None:
            pending = asyncio.ensure_future(self._refresh(credential))
            self._in_flight[credential.owner_id] = pending
            pending.add_done_callback(
                lambda _: self._in_flight.pop(credential.owner_id, None)
            )
        return await pending

    async def access_token_for(self, owner_id: UUID) -> str:
        """Load the owner's credential and return a fresh access token."""
        return await self.ensure_fresh_token(self.repository.get_credential(owner_id))

    async def connect(self, owner_id: UUID, code: str, redirect_uri: str) -> Credential:
        """Exchange an authorization code and store the resulting credential."""
        grant = await self.client.exchange_code(code, redirect_uri)
        credential = Credential(
            owner_id=owner_id,
            fitbit_user_id=grant.fitbit_user_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=self._expiry(grant),
        )
        self.repository.save_credential(credential)
        _logger.info("Fitbit connected: owner_id=%s", owner_id)
        return credential

    async def _refresh(self, credential: Credential) -> str:
        _logger.info("Refreshing Fitbit token: owner_id=%s", credential.owner_id)
        grant = await self.client.refresh_token(credential.refresh_token)
        refreshed = replace(
            credential,
            fitbit_user_id=grant.fitbit_user_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=self._expiry(grant),
        )
        self._save_with_retry(refreshed)
        return refreshed.access_token

    def _save_with_retry(self, credential: Credential) -> None:
        try:
            self.repository.save_credential(credential)
        except Exception as exc:  # noqa: BLE001
            _logger.warning(
                "Saving refreshed Fitbit token failed, retrying once: %s", exc
            )
        else:
            return
        try:
            self.repository.save_credential(credential)
        except Exception as exc:
            _logger.error("Saving refreshed Fitbit token failed again: %s", exc)
            raise LocalStoreError("Failed to save refreshed Fitbit token") from exc

    def _expiry(self, grant: TokenGrant) -> datetime:
        return self.clock() + timedelta(seconds=grant.expires_in)
