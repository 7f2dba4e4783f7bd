import re

from markit.schemas.attendance import DeviceInfo

# Order matters: the first match wins.
OS_PATTERNS = [
    (re.compile(r"android", re.I), "Android"),
    (re.compile(r"iPad|iPhone|iPod"), "iOS"),
    (re.compile(r"Macintosh|MacIntel|MacPPC|Mac68K"), "macOS"),
    (re.compile(r"Win32|Win64|Windows|WinCE"), "Windows"),
    (re.compile(r"Linux"), "Linux"),
]

# Chromium based browsers also advertise "Chrome" and "Safari".
BROWSER_MARKERS = [
    (("Firefox",), "Mozilla Firefox"),
    (("SamsungBrowser",), "Samsung Internet"),
    (("Opera", "OPR"), "Opera"),
    (("Trident",), "Microsoft Internet Explorer"),
    (("Edg",), "Microsoft Edge"),
    (("Chrome",), "Google Chrome"),
    (("Safari",), "Apple Safari"),
]


def get_device_info(user_agent: str | None) -> DeviceInfo:
    """Describe the client platform from its User-Agent. Metadata only."""
    ua = user_agent or ""

    os_name = next(
        (name for pattern, name in OS_PATTERNS if pattern.search(ua)), "Unknown OS"
    )
    browser = next(
        (
            name
            for markers, name in BROWSER_MARKERS
            if any(marker in ua for marker in markers)
        ),
        "Unknown Browser",
    )
    return DeviceInfo(os=os_name, browser=browser, userAgent=ua)
