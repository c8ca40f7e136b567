"""
Exchange rates: lookups over the mirrored rate table, the daily-rate write
path, and acquisition from the external rate service with a backward retry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Optional
from zoneinfo import ZoneInfo

import httpx

from bakeledger.config import settings
from bakeledger.errors import AcquisitionExhausted, ValidationError
from bakeledger.services.changes import change
from bakeledger.services.mirror import EXCHANGE_RATES
from bakeledger.services.ops import operation
from bakeledger.services.sync import MutationPlan, Write
from bakeledger.util.money import to_number
from bakeledger.util.serialize import now_iso

if TYPE_CHECKING:
    from bakeledger.services.workspace import Workspace

logger = logging.getLogger(__name__)

ENTITY_TYPE = "Exchange rate"


def today(tz: str | None = None) -> str:
    return datetime.now(ZoneInfo(tz or settings.TZ)).date().isoformat()


def parse_day(value) -> str:
    """Normalise a YYYY-MM-DD string (or date); raises ValidationError otherwise."""
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r} (expected YYYY-MM-DD).")


# -- lookups -------------------------------------------------------------------

def sorted_rates(ws: "Workspace") -> list[dict]:
    return sorted(ws.items(EXCHANGE_RATES), key=lambda r: r.get("date") or "", reverse=True)


def resolve_latest_rate_data_before(ws: "Workspace", day: str) -> Optional[dict]:
    """Newest rate record dated on or before ``day``."""
    for rec in sorted_rates(ws):
        if (rec.get("date") or "") <= day:
            return rec
    return None


def resolve_rate_for_date(ws: "Workspace", day: str) -> Optional[float]:
    rec = resolve_latest_rate_data_before(ws, day)
    return rec.get("rate") if rec else None


def resolve_exact_rate(ws: "Workspace", day: str) -> Optional[float]:
    for rec in ws.items(EXCHANGE_RATES):
        if rec.get("date") == day:
            return rec.get("rate")
    return None


def current_daily_rate(ws: "Workspace") -> Optional[dict]:
    """Today's rate if on file, else the newest one."""
    rates = sorted_rates(ws)
    if not rates:
        return None
    day = today()
    for rec in rates:
        if rec.get("date") == day:
            return rec
    return rates[0]


# -- writes --------------------------------------------------------------------

@operation(failed=False)
async def update_daily_rate(ws: "Workspace", rate_value, day: str | None = None) -> bool:
    rate = to_number(rate_value)
    if rate is None or rate <= 0:
        raise ValidationError("The exchange rate must be a positive number.")
    day = parse_day(day) if day else today()

    original = ws.get(EXCHANGE_RATES, day)
    old_rate = original.get("rate") if original else None
    if original is not None and to_number(old_rate) == rate:
        logger.debug("rate %s for %s already on file", rate, day)
        ws.refresh_derived()
        return True

    user = ws.identity.current_user
    entry = {
        "id": day,
        "date": day,
        "rate": rate,
        "timestamp": now_iso(),
        "userId": user.id if user else None,
    }
    plan = MutationPlan(
        label=f"rate:{day}",
        failure_message="Could not save the exchange rate on the server.",
    )
    plan.add(
        Write(EXCHANGE_RATES, day, entry, stamp_fields=("timestamp",)),
        {
            "eventType": "EXCHANGE_RATE_EDITED" if original else "EXCHANGE_RATE_CREATED",
            "entityType": ENTITY_TYPE,
            "entityId": day,
            "entityName": f"Rate for {day}",
            "changes": [change("rate", old_rate, rate)],
        },
    )
    await ws.execute(plan)
    return True


# -- acquisition ---------------------------------------------------------------

@dataclass
class AcquisitionResult:
    rate: Optional[float]
    date_found: Optional[str]
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.rate is not None

    def as_dict(self) -> dict:
        return {"rate": self.rate, "dateFound": self.date_found, "error": self.error}


def _api_day(day: str) -> str:
    y, m, d = day.split("-")
    return f"{d}-{m}-{y}"


def _parse_last_update(value: str | None) -> Optional[str]:
    """'DD/MM/YYYY, HH:MM AM' -> 'YYYY-MM-DD'."""
    if not value:
        return None
    part = str(value).split(",")[0].strip()
    try:
        d, m, y = part.split("/")
        return date(int(y), int(m), int(d)).isoformat()
    except ValueError:
        return None


class RateSource:
    """Client for the dollar-history endpoint of the rate service."""

    def __init__(self, client: httpx.AsyncClient, url: str | None = None, token: str | None = None):
        self.client = client
        self.url = url or settings.RATE_API_URL
        self.token = settings.RATE_API_TOKEN if token is None else token

    def params(self, day: str) -> dict:
        q = _api_day(day)
        return {
            "page": "bcv",
            "monitor": "usd",
            "start_date": q,
            "end_date": q,
            "format_date": "default",
            "rounded_price": "true",
            "order": "desc",
        }

    async def fetch(self, day: str) -> Optional[dict]:
        """
        The rate published for ``day`` as ``{"rate", "date"}``, or None when
        the service has nothing usable (non-200, bad body, empty history).
        """
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            r = await self.client.get(self.url, params=self.params(day), headers=headers,
                                      timeout=settings.RATE_HTTP_TIMEOUT)
        except httpx.HTTPError as exc:
            logger.info("rate service request for %s failed: %s", day, exc)
            return None
        if r.status_code != 200:
            logger.info("rate service returned %s for %s", r.status_code, day)
            return None
        try:
            data = r.json()
        except ValueError:
            logger.info("rate service sent a non-JSON body for %s", day)
            return None
        history = data.get("history") if isinstance(data, dict) else None
        if not history:
            return None
        entry = history[0] if isinstance(history[0], dict) else {}
        rate = to_number(entry.get("price"))
        if rate is None or rate <= 0:
            logger.info("rate service sent an unusable price for %s: %r", day, entry.get("price"))
            return None
        return {"rate": rate, "date": _parse_last_update(entry.get("last_update")) or day}


def _source_for(ws: "Workspace", source: RateSource | None) -> RateSource:
    if source is not None:
        return source
    if ws.http is None:
        raise ValidationError("No rate service client is configured.")
    return RateSource(ws.http)


async def _lookup(ws: "Workspace", source: RateSource, day: str) -> Optional[dict]:
    if day in ws.rate_cache:
        return ws.rate_cache[day]
    # misses are not cached; the next call asks again
    found = await source.fetch(day)
    if found is not None:
        ws.rate_cache[day] = found
    return found


async def acquire_rate_for_date(
    ws: "Workspace",
    day,
    source: RateSource | None = None,
    max_retries: int | None = None,
) -> AcquisitionResult:
    """
    Ask the rate service for ``day``, stepping back one day per miss.

    The first rate found is stored under ``day`` and, when it was published
    for another day, under that day as well. Exhaustion is reported in the
    result, never raised.
    """
    ws.error = None
    try:
        target = parse_day(day)
        src = _source_for(ws, source)
    except ValidationError as exc:
        ws.error = exc.message
        return AcquisitionResult(None, None, exc.message)

    retries = settings.RATE_MAX_RETRIES if max_retries is None else max_retries
    attempt_day = date.fromisoformat(target)
    for attempt in range(retries + 1):
        query = attempt_day.isoformat()
        logger.debug("rate attempt %d/%d for %s (query %s)", attempt + 1, retries + 1, target, query)
        found = await _lookup(ws, src, query)
        if found is not None:
            logger.info("rate %s found for %s (published %s)", found["rate"], target, found["date"])
            await update_daily_rate(ws, found["rate"], target)
            if found["date"] != target:
                await update_daily_rate(ws, found["rate"], found["date"])
            return AcquisitionResult(found["rate"], found["date"], None)
        logger.info("no published rate for %s", query)
        attempt_day -= timedelta(days=1)

    exhausted = AcquisitionExhausted(target, retries + 1)
    logger.warning(exhausted.message)
    ws.error = exhausted.message
    return AcquisitionResult(None, None, exhausted.message)


async def acquire_today_rate(ws: "Workspace", source: RateSource | None = None, max_retries: int | None = None) -> AcquisitionResult:
    return await acquire_rate_for_date(ws, today(), source, max_retries)

