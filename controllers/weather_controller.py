from fastapi import HTTPException
from collections import OrderedDict
from datetime import datetime, timezone
from typing import List
import logging

import httpx

from config import OPENWEATHER_API_KEY, OPENWEATHER_BASE_URL
from models.weather import CurrentWeather, ForecastDay

logger = logging.getLogger(__name__)


async def _fetch(path: str, city: str) -> dict:
    if not OPENWEATHER_API_KEY:
        raise HTTPException(status_code=500, detail="Weather service not configured")
    params = {"q": city, "appid": OPENWEATHER_API_KEY, "units": "metric"}
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(f"{OPENWEATHER_BASE_URL}/{path}", params=params)
    except httpx.HTTPError as e:
        logger.error(f"Weather request for '{city}' failed: {e}")
        raise HTTPException(status_code=502, detail="Weather service unavailable")
    if resp.status_code == 404:
        raise HTTPException(status_code=404, detail=f"City '{city}' not found")
    if resp.status_code != 200:
        logger.error(f"Weather API returned {resp.status_code} for '{city}'")
        raise HTTPException(status_code=502, detail="Weather service error")
    return resp.json()


def parse_current(payload: dict) -> CurrentWeather:
    weather = payload["weather"][0]
    return CurrentWeather(
        location=payload["name"],
        temperature=round(payload["main"]["temp"]),
        feels_like=round(payload["main"]["feels_like"]),
        description=weather["description"],
        icon=weather["icon"],
        humidity=payload["main"]["humidity"],
        wind_speed=payload["wind"]["speed"],
        pressure=payload["main"]["pressure"],
        visibility=payload.get("visibility"),
    )


def parse_forecast(payload: dict, days: int = 5) -> List[ForecastDay]:
    """Collapse the 3-hourly forecast list into one entry per calendar day."""
    grouped = OrderedDict()
    for entry in payload.get("list", []):
        day = datetime.fromtimestamp(entry["dt"], tz=timezone.utc).strftime("%Y-%m-%d")
        grouped.setdefault(day, []).append(entry)
    forecast = []
    for day, entries in list(grouped.items())[:days]:
        midday = entries[len(entries) // 2]
        forecast.append(ForecastDay(
            date=day,
            temp_min=round(min(e["main"]["temp_min"] for e in entries)),
            temp_max=round(max(e["main"]["temp_max"] for e in entries)),
            description=midday["weather"][0]["description"],
            icon=midday["weather"][0]["icon"],
            humidity=midday["main"]["humidity"],
            wind_speed=midday["wind"]["speed"],
        ))
    return forecast


async def get_current_weather(city: str) -> CurrentWeather:
    return parse_current(await _fetch("weather", city))


async def get_forecast(city: str) -> List[ForecastDay]:
    return parse_forecast(await _fetch("forecast", city))
