from __future__ import annotations

import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Literal, Optional, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import RawItem, utc_now

logger = get_logger()

QuotaPeriod = Literal["day", "month"]


class UpstreamPayloadError(RuntimeError):
    """Upstream answered, but not with a usable payload (never retried)."""


@runtime_checkable
class SourceAdapter(Protocol):
    """Capability pair the aggregator iterates over; adapters share no base class."""

    name: str

    async def is_available(self) -> bool: ...

    async def fetch(self) -> List[RawItem]: ...


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """ISO-8601 string (with or without trailing Z) → aware UTC datetime, else None."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def finite_or_none(value: Any) -> Optional[float]:
    """Numeric payload value as a finite float; NaN, infinities and junk become None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class QuotaCounter:
    """
    Usage counter that resets when the calendar period (UTC) changes.

    The reset is checked on every read, comparing the current period key
    with the key recorded at the last reset.
    """

    def __init__(
        self,
        limit: int,
        period: QuotaPeriod,
        *,
        name: str,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.limit = limit
        self.period = period
        self.name = name
        self._clock = clock
        self.used = 0
        self.reset_key = self.period_key()

    def period_key(self) -> str:
        now = self._clock()
        return now.strftime("%Y-%m-%d") if self.period == "day" else now.strftime("%Y-%m")

    def _maybe_reset(self) -> None:
        key = self.period_key()
        if key != self.reset_key:
            logger.info(
                "source_quota_reset",
                quota=self.name,
                previous_period=self.reset_key,
                period=key,
                used=self.used,
            )
            self.used = 0
            self.reset_key = key

    def remaining(self) -> int:
        self._maybe_reset()
        return max(self.limit - self.used, 0)

    def has_remaining(self, cost: int = 1) -> bool:
        return self.remaining() >= cost

    def consume(self, cost: int = 1) -> None:
        self._maybe_reset()
        self.used += cost


@asynccontextmanager
async def open_client(
    client: Optional[httpx.AsyncClient],
    *,
    base_url: str = "",
    timeout_s: Optional[float] = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        base_url=base_url,
        headers={"User-Agent": settings.HTTP_USER_AGENT},
        timeout=timeout_s or settings.HTTP_TIMEOUT_S,
        follow_redirects=True,
    ) as owned:
        yield owned


def build_item(source_name: str, **fields: Any) -> Optional[RawItem]:
    """
    Construct a RawItem at the mapping boundary; payloads missing required
    fields are logged and skipped.
    """
    if not fields.get("title") or not fields.get("url"):
        logger.debug("source_item_skipped", source_name=source_name, reason="missing_title_or_url")
        return None
    try:
        return RawItem(source_name=source_name, **fields)
    except ValidationError as exc:
        logger.warning(
            "source_item_invalid",
            source_name=source_name,
            url=fields.get("url"),
            error=str(exc),
        )
        return None


def dump_items(items: Iterable[RawItem]) -> List[Dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def load_items(payload: Any, source_name: str) -> List[RawItem]:
    """Rehydrate a cached list of items; corrupt entries are dropped."""
    if not isinstance(payload, list):
        return []
    items: List[RawItem] = []
    for raw in payload:
        try:
            items.append(RawItem.model_validate(raw))
        except ValidationError as exc:
            logger.warning("source_cached_item_invalid", source_name=source_name, error=str(exc))
    return items
