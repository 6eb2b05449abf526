"""
Current weather via the Open-Meteo forecast API. No API key required.
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class WeatherTool:
    DEFAULT_URL = "https://api.open-meteo.com/v1/forecast"

    name = "getWeather"
    description = "Get the current weather at a location"
    parameters = {
        "type": "object",
        "properties": {
            "latitude": {"type": "number"},
            "longitude": {"type": "number"},
        },
        "required": ["latitude", "longitude"],
    }

    def __init__(self, url: str = DEFAULT_URL, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def run(self, args: dict, ctx=None) -> dict:
        params = {
            "latitude": args["latitude"],
            "longitude": args["longitude"],
            "current": "temperature_2m",
            "hourly": "temperature_2m",
            "daily": "sunrise,sunset",
            "timezone": "auto",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(self.url, params=params)
            resp.raise_for_status()
            logger.debug("Weather lookup for %s,%s", args["latitude"], args["longitude"])
            return resp.json()
