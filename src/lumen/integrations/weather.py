"""Current conditions from wttr.in."""

from __future__ import annotations

from typing import Any
from urllib import parse as urllib_parse

import httpx

from lumen.errors import IntegrationRequestError

WTTR_URL = "https://wttr.in/{location}"
WEATHER_TIMEOUT_SECONDS = 10.0


async def fetch_weather(http_client: httpx.AsyncClient, location: str) -> dict[str, Any]:
    url = WTTR_URL.format(location=urllib_parse.quote(location))
    response = await http_client.get(url, params={"format": "j1"}, timeout=WEATHER_TIMEOUT_SECONDS)
    if response.is_error:
        raise IntegrationRequestError("Weather", response.status_code, response.reason_phrase)
    try:
        data = response.json()
    except ValueError as exc:
        raise IntegrationRequestError("Weather", response.status_code, "invalid JSON body") from exc

    conditions = data.get("current_condition") if isinstance(data, dict) else None
    if not conditions:
        raise IntegrationRequestError("Weather", response.status_code, f"no current conditions for {location}")

    current = conditions[0]
    descriptions = current.get("weatherDesc") or [{}]
    return {
        "location": location,
        "temperature_c": current.get("temp_C", "unknown"),
        "condition": descriptions[0].get("value", "unknown"),
        "humidity": f"{current.get('humidity', 'unknown')}%",
    }
