from __future__ import annotations

import logging
import time

import httpx
from pydantic import ValidationError as PydanticValidationError

from funfinder.errors import NotFoundError, TransportError
from funfinder.open_meteo_client import OpenMeteoClient
from funfinder.schemas import ResolvedLocation


logger = logging.getLogger("funfinder")


async def resolve_location(client: OpenMeteoClient, text: str) -> ResolvedLocation:
    start = time.monotonic()
    logger.info("resolve:start location=%s", text)
    try:
        raw = await client.search(text)
    except httpx.HTTPStatusError as exc:
        logger.error("resolve:failed status=%s", exc.response.status_code)
        raise TransportError(
            f"Geocoding failed: {exc.response.status_code} {exc.response.reason_phrase}"
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("resolve:failed %s", exc)
        raise TransportError(f"Geocoding failed: {exc}") from exc
    except ValueError as exc:
        raise TransportError("Geocoding returned a non-JSON body") from exc

    results = raw.get("results") if isinstance(raw, dict) else None
    if not results:
        logger.warning("resolve:not_found location=%s", text)
        raise NotFoundError(f"No matching location found for '{text}'")

    first = results[0]
    try:
        location = ResolvedLocation(
            latitude=first.get("latitude"),
            longitude=first.get("longitude"),
            name=first.get("name") or "",
            country=first.get("country") or "",
            country_code=first.get("country_code") or "",
        )
    except PydanticValidationError as exc:
        raise NotFoundError(f"No usable location found for '{text}'") from exc

    logger.info(
        "resolve:done %s (%s) in %.2fs",
        location.label,
        location.country_code,
        time.monotonic() - start,
    )
    return location
