"""Two-legged OAuth token cache for Autodesk Platform Services."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

import httpx

from symbolgen.cad.errors import ExecutionServiceError

logger = logging.getLogger(__name__)

DEFAULT_SCOPES: tuple[str, ...] = ("bucket:create", "bucket:read", "bucket:delete", "data:read", "data:write", "data:create", "code:all")

# Refresh this many seconds before the token actually expires.
REFRESH_MARGIN_SECONDS = 300


class APSTokenProvider:
  """Fetch and cache client-credentials tokens."""

  def __init__(
    self,
    client: httpx.AsyncClient,
    *,
    client_id: str | None,
    client_secret: str | None,
    auth_url: str,
    scopes: Sequence[str] = DEFAULT_SCOPES,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self._client = client
    self._client_id = client_id
    self._client_secret = client_secret
    self._auth_url = auth_url
    self._scopes = " ".join(scopes)
    self._clock = clock
    self._token: str | None = None
    self._expires_at = 0.0
    self._lock = asyncio.Lock()

  async def get_token(self) -> str:
    """Return a cached token or fetch a new one."""
    async with self._lock:
      if self._token and self._clock() < self._expires_at:
        return self._token

      if not self._client_id or not self._client_secret:
        raise ExecutionServiceError("APS credentials not configured")

      response = await self._client.post(
        self._auth_url,
        data={"grant_type": "client_credentials", "scope": self._scopes},
        auth=(self._client_id, self._client_secret),
        headers={"Accept": "application/json"},
      )
      if response.status_code != 200:
        logger.error("APS token request failed (%s): %s", response.status_code, response.text)
        raise ExecutionServiceError(f"APS authentication failed ({response.status_code})", status_code=response.status_code)

      payload = response.json()
      expires_in = int(payload.get("expires_in", 3600))
      self._token = str(payload["access_token"])
      self._expires_at = self._clock() + max(expires_in - REFRESH_MARGIN_SECONDS, 0)
      logger.debug("Fetched APS token valid for %ss", expires_in)
      return self._token

  def invalidate(self) -> None:
    self._token = None
    self._expires_at = 0.0
