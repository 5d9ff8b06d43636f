"""Client for the auth provider's admin user listing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

PAGE_SIZE = 200
MAX_PAGES = 25


@dataclass
class UserProfile:
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


def profile_from_admin_user(user: Dict[str, Any]) -> UserProfile:
    metadata = user.get("user_metadata") or {}
    email = user.get("email") or None
    display_name = metadata.get("full_name") or metadata.get("name")
    if not display_name and email:
        display_name = email.split("@", 1)[0]
    return UserProfile(
        user_id=str(user.get("id", "")),
        email=email,
        display_name=display_name or None,
        avatar_url=metadata.get("avatar_url") or metadata.get("picture"),
    )


class AuthProviderClient:
    """
    Lists registered users through the Supabase admin API.

    Without a URL and service key the client is disabled and returns no
    profiles; listing failures are logged and also yield no profiles.
    """

    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key or ""
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "AuthProviderClient":
        return cls(base_url=settings.SUPABASE_URL, service_key=settings.SUPABASE_SERVICE_ROLE_KEY)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.service_key)

    async def list_profiles(self) -> List[UserProfile]:
        if not self.configured:
            return []

        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        profiles: List[UserProfile] = []
        try:
            for page in range(1, MAX_PAGES + 1):
                response = await self._http.get(
                    f"{self.base_url}/auth/v1/admin/users",
                    params={"page": page, "per_page": PAGE_SIZE},
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
                users = payload.get("users", []) if isinstance(payload, dict) else payload
                profiles.extend(profile_from_admin_user(user) for user in users or [])
                if len(users or []) < PAGE_SIZE:
                    break
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not list auth provider users: %s", exc)
            return []
        return profiles

    async def aclose(self) -> None:
        await self._http.aclose()
