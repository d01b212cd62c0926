"""Coarse IP geolocation for session metadata"""
import ipaddress
import os
from typing import Optional

import httpx

from .logging import get_logger

logger = get_logger(__name__)

GEOLOCATION_ENABLED = os.getenv("GEOLOCATION_ENABLED", "true").lower() in {"1", "true", "yes", "on"}
GEOLOCATION_URL = os.getenv("GEOLOCATION_URL", "http://ip-api.com/json/{ip}")
GEOLOCATION_TIMEOUT_SECONDS = 5.0


def lookup_location(ip_address: Optional[str]) -> str:
    """Return "City, Country" for a public IP, "Local" or "Unknown" otherwise"""
    if not ip_address:
        return "Unknown"
    try:
        ip = ipaddress.ip_address(ip_address)
    except ValueError:
        return "Unknown"

    if ip.is_loopback or ip.is_private:
        return "Local"
    if not GEOLOCATION_ENABLED:
        return "Unknown"

    try:
        response = httpx.get(
            GEOLOCATION_URL.format(ip=ip_address),
            timeout=GEOLOCATION_TIMEOUT_SECONDS
        )
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError):
        logger.warning("geolocation_lookup_failed", ip_address=ip_address)
        return "Unknown"

    city = data.get("city")
    country = data.get("country")
    if city and country:
        return f"{city}, {country}"
    return "Unknown"
