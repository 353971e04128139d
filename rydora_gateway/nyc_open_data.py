from __future__ import annotations

import json
import logging
import math
from typing import Any

import httpx

from rydora_gateway.upstream import DEFAULT_TIMEOUT_SECONDS, UpstreamClientFactory

DEFAULT_LIMIT = 5000

logger = logging.getLogger("uvicorn.error")


def parse_license_plates(raw: str | None) -> list[str]:
    if raw is None or not raw.strip():
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return [raw.strip()]
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]
    if isinstance(parsed, (str, int)):
        text = str(parsed).strip()
        return [text] if text else []
    return []


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_where_clause(
    plates: list[str],
    date_from: str | None = None,
    date_to: str | None = None,
) -> str:
    plate_conditions = " OR ".join(f"plate={_quote_literal(plate)}" for plate in plates)
    where = f"({plate_conditions})"
    if date_from and date_to:
        where += (
            f" AND issue_date >= {_quote_literal(date_from)}"
            f" AND issue_date <= {_quote_literal(date_to)}"
        )
    return where


def empty_violations_result() -> dict[str, Any]:
    return {"rows": [], "data": [], "totalCount": 0, "page": 1, "totalPages": 0}


def build_violations_result(rows: list[Any], limit: int, offset: int) -> dict[str, Any]:
    safe_limit = max(1, limit)
    return {
        "rows": rows,
        "data": rows,
        "totalCount": len(rows),
        "page": offset // safe_limit + 1,
        "totalPages": math.ceil(len(rows) / safe_limit),
    }


async def fetch_nyc_violations(
    factory: UpstreamClientFactory,
    dataset_url: str,
    plates: list[str],
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> dict[str, Any]:
    """Query the public NYC parking/camera violations dataset.

    No credentials are sent. Failures degrade to an empty result so the page
    stays usable when the open-data portal is down.
    """
    if not plates:
        return empty_violations_result()

    params = {
        "$limit": str(limit),
        "$offset": str(offset),
        "$where": build_where_clause(plates, date_from, date_to),
    }
    try:
        async with factory.external(DEFAULT_TIMEOUT_SECONDS) as client:
            response = await client.get(dataset_url, params=params)
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(
            "nyc_open_data_error plates=%d error_type=%s error=%s",
            len(plates),
            exc.__class__.__name__,
            exc,
        )
        return empty_violations_result()

    rows = payload if isinstance(payload, list) else []
    logger.info("nyc_open_data_response plates=%d rows=%d", len(plates), len(rows))
    return build_violations_result(rows, limit, offset)
