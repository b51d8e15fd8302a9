"""IP -> country resolution against an ip-api.com compatible endpoint, cached in-process."""
import ipaddress
import json
import logging
import time
from dataclasses import dataclass
from urllib.error import URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .config import settings

log = logging.getLogger("vaultguard.geo")

# ip -> (GeoInfo | None, expires)
_geo_cache: dict[str, tuple["GeoInfo | None", float]] = {}
_CACHE_MAX = 10_000


class GeoLookupError(Exception):
    """The geo-IP provider could not be reached or answered garbage."""


@dataclass(frozen=True)
class GeoInfo:
    country_code: str
    country: str | None = None
    city: str | None = None
    region: str | None = None
    isp: str | None = None
    is_proxy: bool = False


def is_public_ip(ip: str | None) -> bool:
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


def _fetch(ip: str) -> "GeoInfo | None":
    url = settings.geoip_api_url.format(ip=quote(ip, safe=""))
    req = Request(url, method="GET", headers={"Accept": "application/json"})
    try:
        with urlopen(req, timeout=settings.geoip_timeout_seconds) as r:
            data = json.loads(r.read().decode())
    except (URLError, OSError, ValueError) as e:
        raise GeoLookupError(f"geo lookup failed for {ip}: {e}") from e
    if not isinstance(data, dict):
        raise GeoLookupError(f"unexpected geo payload for {ip}")
    if data.get("status") == "fail" or not data.get("countryCode"):
        return None
    return GeoInfo(
        country_code=str(data["countryCode"]).upper(),
        country=data.get("country"),
        city=data.get("city"),
        region=data.get("regionName"),
        isp=data.get("isp"),
        is_proxy=bool(data.get("proxy")),
    )


def _store(ip: str, info: "GeoInfo | None", now: float) -> None:
    """Inserts on a miss; expired entries are swept first and the oldest go past _CACHE_MAX."""
    for key in [k for k, (_, exp) in _geo_cache.items() if exp <= now]:
        del _geo_cache[key]
    while len(_geo_cache) >= _CACHE_MAX:
        del _geo_cache[next(iter(_geo_cache))]
    _geo_cache[ip] = (info, now + settings.geoip_cache_ttl_seconds)


def lookup_ip(ip: str | None) -> "GeoInfo | None":
    """
    Geo info for a public IP. None for local/private/reserved addresses or when the
    provider does not know the address. Transport errors raise GeoLookupError.
    """
    if not is_public_ip(ip):
        return None
    ip = ip.strip()
    now = time.monotonic()
    cached = _geo_cache.get(ip)
    if cached is not None:
        info, exp = cached
        if exp > now:
            return info
        del _geo_cache[ip]
    info = _fetch(ip)
    _store(ip, info, now)
    return info


def get_country_from_ip(ip: str | None) -> str | None:
    """Country code for audit enrichment; lookup failures are logged and yield None."""
    try:
        info = lookup_ip(ip)
    except GeoLookupError as e:
        log.warning("geo enrichment skipped ip=%s error=%s", ip, e)
        return None
    return info.country_code if info else None


def clear_cache() -> None:
    _geo_cache.clear()
