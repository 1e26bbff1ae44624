"""
Agent profile lookup.

Profiles are read from a key-value style store keyed by assistant id. The gateway
never fails a session because of the store: ``resolve_profile`` falls back to the
built-in default profile for the demo assistant, for unknown ids and for any store
error.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from voice_relay.config.constants import DEFAULT_VOICE_ID, LOGGER_NAME
from voice_relay.errors import ProfileResolutionFailure
from voice_relay.models.conversation import DEFAULT_PROFILE, AgentProfile

logger = logging.getLogger(LOGGER_NAME)

DEMO_ASSISTANT_ID = "demo"
REQUEST_TIMEOUT = 5.0  # seconds


class ProfileStore(Protocol):
    async def get_profile(self, assistant_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        ...


class InMemoryProfileStore:
    """Profile rows held in a dict, keyed by assistant id."""

    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows = dict(rows or {})

    async def get_profile(self, assistant_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return self.rows.get(assistant_id)


class SupabaseProfileStore:
    """
    Reads the ``assistants`` table through the Supabase REST (PostgREST) API.

    Args:
        url: Project URL, e.g. ``https://xyz.supabase.co``
        service_role_key: Key used for both the ``apikey`` and bearer headers
        client: Optional ``httpx.AsyncClient``; one is created per lookup if omitted
    """

    def __init__(self, url: str, service_role_key: str, client: Optional[httpx.AsyncClient] = None):
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self._client = client

    async def get_profile(self, assistant_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        params = {"id": f"eq.{assistant_id}", "select": "*"}
        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Accept": "application/json",
        }
        endpoint = f"{self.url}/rest/v1/assistants"

        try:
            if self._client is not None:
                response = await self._client.get(endpoint, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    response = await client.get(endpoint, params=params, headers=headers)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProfileResolutionFailure(
                f"Profile lookup failed for assistant {assistant_id}: {e}",
                {"assistant_id": assistant_id, "user_id": user_id},
            ) from e

        if not isinstance(rows, list) or not rows:
            return None
        return rows[0]


def profile_from_row(row: Dict[str, Any]) -> AgentProfile:
    """Map a stored assistant row onto an ``AgentProfile``."""
    if not isinstance(row, dict):
        raise ProfileResolutionFailure(f"Invalid profile row: expected an object, got {type(row).__name__}")
    try:
        return AgentProfile(
            name=row.get("name") or DEFAULT_PROFILE.name,
            system_prompt=row.get("system_prompt") or DEFAULT_PROFILE.system_prompt,
            voice_id=row.get("voice_id") or DEFAULT_VOICE_ID,
            temperature=row.get("temperature") if row.get("temperature") is not None else DEFAULT_PROFILE.temperature,
            max_reply_tokens=row.get("max_tokens") or DEFAULT_PROFILE.max_reply_tokens,
            opening_message=row.get("first_message"),
        )
    except ValidationError as e:
        raise ProfileResolutionFailure(f"Invalid profile row: {e}") from e


async def resolve_profile(
    store: Optional[ProfileStore], assistant_id: Optional[str], user_id: Optional[str]
) -> AgentProfile:
    """
    Resolve the profile for a session, falling back to the default profile.

    Args:
        store: Profile store, or None when no store is configured
        assistant_id: Assistant requested in the client handshake
        user_id: User requested in the client handshake

    Returns:
        AgentProfile: The stored profile, or ``DEFAULT_PROFILE``
    """
    if store is None or not assistant_id or assistant_id == DEMO_ASSISTANT_ID:
        return DEFAULT_PROFILE

    try:
        row = await store.get_profile(assistant_id, user_id or "")
        if row is None:
            logger.warning(f"No profile found for assistant {assistant_id}, using default")
            return DEFAULT_PROFILE
        profile = profile_from_row(row)
    except ProfileResolutionFailure as e:
        logger.error(f"Could not resolve profile: {e}")
        return DEFAULT_PROFILE
    except Exception as e:
        logger.error(f"Could not resolve profile for assistant {assistant_id}: {e}", exc_info=True)
        return DEFAULT_PROFILE

    logger.info(f"Resolved profile '{profile.name}' for assistant {assistant_id}")
    return profile
