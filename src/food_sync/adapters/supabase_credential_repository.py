"""Supabase-backed Fitbit credential repository."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from food_sync.domain.credentials import Credential
from food_sync.services.tokens import CredentialRepository


@dataclass
class SupabaseCredentialRepository(CredentialRepository):
    """Supabase implementation for Fitbit token persistence."""

    client: Client

    def get_credential(self, owner_id: UUID) -> Credential | None:
        """Return the stored credential for an owner, if present."""
        response = (
            self.client.table("fitbit_tokens")
            .select("user_id, fitbit_user_id, access_token, refresh_token, expires_at")
            .eq("user_id", str(owner_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        expires_at = datetime.fromisoformat(str(row["expires_at"]))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return Credential(
            owner_id=UUID(str(row["user_id"])),
            fitbit_user_id=str(row["fitbit_user_id"]),
            access_token=str(row["access_token"]),
            refresh_token=str(row["refresh_token"]),
            expires_at=expires_at,
        )

    def save_credential(self, credential: Credential) -> None:
        """Insert or replace the owner's credential row."""
        response = (
            self.client.table("fitbit_tokens")
            .upsert(
                {
                    "user_id": str(credential.owner_id),
                    "fitbit_user_id": credential.fitbit_user_id,
                    "access_token": credential.access_token,
                    "refresh_token": credential.refresh_token,
                    "expires_at": credential.expires_at.isoformat(),
                    "updated_at": datetime.now(tz=UTC).isoformat(),
                },
                on_conflict="user_id",
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to save Fitbit credential")
