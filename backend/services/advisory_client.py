"""HTTP adapter for the external advisory (text generation) backend."""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence such as ```json ... ```."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    first_newline = stripped.find("\n")
    body = stripped[first_newline + 1 :] if first_newline != -1 else ""
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


class AdvisoryClient:
    """Posts one structured payload per capability and returns the decoded object.

    ``request`` returns ``None`` when the advisory backend is not configured.
    Transport and HTTP status failures surface as ``httpx.HTTPError``; a body
    that is not a JSON object raises ``ValueError``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = http_client

    @property
    def configured(self) -> bool:
        return self._settings.advisory_enabled and bool(self._settings.advisory_base_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.advisory_base_url.rstrip("/"),
                timeout=self._settings.advisory_timeout_seconds,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.advisory_api_key:
            headers["Authorization"] = f"Bearer {self._settings.advisory_api_key}"
        return headers

    async def request(self, capability: str, payload: dict[str, Any]) -> Optional[dict[str, Any]]:
        if not self.configured:
            logger.debug("Advisory backend not configured | capability=%s", capability)
            return None

        client = self._get_client()
        response = await client.post(
            f"/{capability}",
            content=json.dumps(payload, default=str),
            headers=self._headers(),
        )
        response.raise_for_status()

        if not response.content:
            return None
        decoded = json.loads(strip_code_fences(response.text))
        if decoded is None:
            return None
        if not isinstance(decoded, dict):
            raise ValueError(f"Advisory response for {capability} is not a JSON object")
        return decoded

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
