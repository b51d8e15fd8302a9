"""User-agent -> coarse device fingerprint ("iPhone - iOS - Safari")."""
import re
from dataclasses import dataclass

UNKNOWN_DEVICE = "Unknown Device"

_MOBILE = re.compile(r"mobile|android|iphone|ipod|blackberry|iemobile|opera mini", re.I)
_TABLET = re.compile(r"tablet|ipad|playbook|silk", re.I)

# First match wins; order matters (Edge and Opera also advertise Chrome)
_BROWSERS = (
    ("Edge", re.compile(r"edg", re.I)),
    ("Opera", re.compile(r"opr|opera", re.I)),
    ("Chrome", re.compile(r"chrome|crios", re.I)),
    ("Firefox", re.compile(r"firefox|fxios", re.I)),
    ("Safari", re.compile(r"safari", re.I)),
)

_WINDOWS_VERSIONS = (
    ("windows nt 10", "Windows 10/11"),
    ("windows nt 6.3", "Windows 8.1"),
    ("windows nt 6.2", "Windows 8"),
    ("windows nt 6.1", "Windows 7"),
)


@dataclass(frozen=True)
class DeviceInfo:
    device_name: str
    device_type: str  # mobile | tablet | desktop | unknown
    browser: str | None = None
    os: str | None = None


def _family(ua: str) -> tuple[str, str]:
    if _MOBILE.search(ua) and not re.search(r"ipad|tablet", ua):
        if "iphone" in ua:
            return "iPhone", "mobile"
        if "ipod" in ua:
            return "iPod", "mobile"
        if "android" in ua and "mobile" in ua:
            return "Android Phone", "mobile"
        if "blackberry" in ua:
            return "BlackBerry", "mobile"
        if "android" not in ua:
            return "Mobile Device", "mobile"
    if _TABLET.search(ua) or "android" in ua:
        if "ipad" in ua:
            return "iPad", "tablet"
        if "android" in ua:
            return "Android Tablet", "tablet"
        return "Tablet", "tablet"
    if "windows" in ua:
        return "Windows PC", "desktop"
    if "macintosh" in ua or "mac os x" in ua:
        return "Mac", "desktop"
    if "linux" in ua:
        return "Linux PC", "desktop"
    return "Desktop", "desktop"


def _os(ua: str) -> str | None:
    if "windows" in ua:
        for marker, name in _WINDOWS_VERSIONS:
            if marker in ua:
                return name
        return "Windows"
    if "android" in ua:
        return "Android"
    if re.search(r"iphone|ipad|ipod", ua):
        return "iOS"
    if "macintosh" in ua or "mac os x" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    return None


def _browser(ua: str) -> str | None:
    for name, pattern in _BROWSERS:
        if pattern.search(ua):
            return name
    return None


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    if not user_agent or not user_agent.strip():
        return DeviceInfo(device_name=UNKNOWN_DEVICE, device_type="unknown")
    ua = user_agent.lower()
    family, device_type = _family(ua)
    os_name = _os(ua)
    browser = _browser(ua)
    parts = [family] + [p for p in (os_name, browser) if p]
    return DeviceInfo(
        device_name=" - ".join(parts),
        device_type=device_type,
        browser=browser,
        os=os_name,
    )
