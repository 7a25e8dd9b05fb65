from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import requests
from pydantic import ValidationError

from .config import ApiSettings
from .schemas import ApiDrawPayload, ApiParticipantPayload
from .types import LotteryDraw, LotteryTicket


class ApiFallbackClient:
    """Optional REST mirror of chain state.

    Every method returns ``None`` instead of raising when the mirror is
    disabled, unreachable, answers non-2xx, or serves an unusable payload, so
    callers can fall through to the contract.
    """

    def __init__(
        self,
        settings: ApiSettings,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._logger = logger or logging.getLogger("lotterysync.api")

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    async def try_fetch(self, path: str) -> Optional[Any]:
        if not self.enabled:
            return None
        url = f"{self._settings.base_url}{path}"
        try:
            return await asyncio.to_thread(self._get_json, url, self._settings.timeout_seconds)
        except requests.RequestException as exc:
            self._logger.warning("API request %s failed: %s", url, exc)
        except ValueError as exc:
            self._logger.warning("API response from %s is not JSON: %s", url, exc)
        return None

    def _get_json(self, url: str, timeout_seconds: int) -> Any:
        resp = self._session.get(url, timeout=timeout_seconds)
        resp.raise_for_status()
        return resp.json()

    async def fetch_draw(self, series_index: int, draw_id: int) -> Optional[LotteryDraw]:
        payload = await self.try_fetch(f"/api/lottery/series/{series_index}/draws/{draw_id}")
        if not isinstance(payload, dict):
            return None
        try:
            return ApiDrawPayload.model_validate(payload).to_entity(series_index, draw_id)
        except ValidationError as exc:
            self._logger.warning("Discarding malformed draw payload for %s/%s: %s", series_index, draw_id, exc)
            return None

    async def fetch_participants(self, series_index: int, draw_id: int) -> Optional[List[LotteryTicket]]:
        payload = await self.try_fetch(f"/api/lottery/{draw_id}/participants")
        if not isinstance(payload, list):
            return None
        try:
            return [
                ApiParticipantPayload.model_validate(item).to_entity(series_index, draw_id)
                for item in payload
            ]
        except ValidationError as exc:
            self._logger.warning("Discarding malformed participants payload for draw %s: %s", draw_id, exc)
            return None

    def close(self) -> None:
        self._session.close()
