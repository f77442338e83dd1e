"""Active round snapshot from the ORE state API."""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from .errors import FetchError

logger = logging.getLogger(__name__)

ORE_STATE_URL = "https://ore-api.gmore.fun/v2/state"


@dataclass(frozen=True)
class RoundState:
    round_id: int
    current_slot: int
    end_slot: int

    @property
    def slots_left(self) -> int:
        return max(0, self.end_slot - self.current_slot)


class RoundStateClient:
    def __init__(self, http: httpx.AsyncClient, url: str = ORE_STATE_URL,
                 max_retries: int = 3, backoff: float = 1.0):
        self.http = http
        self.url = url
        self.max_retries = max_retries
        self.backoff = backoff

    async def _get(self) -> httpx.Response:
        """GET with exponential backoff on 429."""
        for attempt in range(self.max_retries):
            resp = await self.http.get(self.url)
            if resp.status_code == 429 and attempt < self.max_retries - 1:
                delay = self.backoff * 2 ** attempt
                logger.info("state API rate limited, retrying in %.1fs", delay)
                await asyncio.sleep(delay)
                continue
            return resp
        return resp

    async def get_round_state(self) -> RoundState:
        try:
            resp = await self._get()
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise FetchError(FetchError.NETWORK, f"state API: {e}") from e
        except ValueError as e:
            raise FetchError(FetchError.INVALID_STATE, f"state API returned invalid JSON: {e}") from e
        return parse_round_state(data)


def parse_round_state(data) -> RoundState:
    """Accept the flat {round_id, current_slot, end_slot} form or the v2 frames form."""
    if not isinstance(data, dict):
        raise FetchError(FetchError.INVALID_STATE, "state is not an object")

    if "round_id" in data:
        raw = (data.get("round_id"), data.get("current_slot"), data.get("end_slot"))
    else:
        frames = data.get("frames") or []
        current_id = data.get("currentRoundId")
        frame = next((f for f in frames if f.get("roundId") == current_id), None)
        if frame is None and frames:
            frame = frames[0]
        live = (frame or {}).get("liveData")
        if not live:
            raise FetchError(FetchError.INVALID_STATE, "no active round in state")
        raw = (
            live.get("roundId") or frame.get("roundId"),
            (data.get("globals") or {}).get("currentSlot"),
            (live.get("mining") or {}).get("endSlot"),
        )

    try:
        round_id, current_slot, end_slot = (int(v) for v in raw)
    except (TypeError, ValueError):
        raise FetchError(FetchError.INVALID_STATE, f"malformed round fields: {raw!r}") from None
    if round_id < 0 or current_slot < 0 or end_slot < 0:
        raise FetchError(FetchError.INVALID_STATE, f"negative round fields: {raw!r}")
    return RoundState(round_id, current_slot, end_slot)
