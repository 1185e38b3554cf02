"""
Build and parse open-pixel and click-redirect tracking URLs.

Layout (all values percent-encoded with no safe characters):
    {APP_URL}/api/v1/tracking/pixel/{tracking_id}/{recipient}
    {APP_URL}/api/v1/tracking/click/{tracking_id}/{destination}/{recipient}

Parsers take the raw request path, i.e. before the server has
percent-decoded it, because an encoded destination URL contains
'%2F' which would otherwise split into extra path segments.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

from app.config import settings
from app.services.errors import MalformedTrackingUrl

TRACKING_PREFIX = "/api/v1/tracking"
PIXEL_SEGMENT = "pixel"
CLICK_SEGMENT = "click"


@dataclass(frozen=True)
class PixelRequest:
    tracking_id: str
    recipient_email: str


@dataclass(frozen=True)
class ClickRequest:
    tracking_id: str
    recipient_email: str
    destination_url: str


def _encode(value: str) -> str:
    return quote(value, safe="")


def _base_url(base_url: Optional[str]) -> str:
    return (base_url or settings.APP_URL).rstrip("/") + TRACKING_PREFIX


def build_pixel_url(tracking_id: str, recipient_email: str, base_url: Optional[str] = None) -> str:
    """URL of the 1x1 open beacon for one recipient."""
    return f"{_base_url(base_url)}/{PIXEL_SEGMENT}/{_encode(tracking_id)}/{_encode(recipient_email)}"


def build_click_url(
    tracking_id: str,
    recipient_email: str,
    destination_url: str,
    base_url: Optional[str] = None
) -> str:
    """URL that records a click and redirects to destination_url."""
    return (
        f"{_base_url(base_url)}/{CLICK_SEGMENT}/{_encode(tracking_id)}"
        f"/{_encode(destination_url)}/{_encode(recipient_email)}"
    )


def _decode(segment: str, name: str) -> str:
    if not segment:
        raise MalformedTrackingUrl(f"Missing {name} segment")
    try:
        value = unquote(segment, errors="strict")
    except UnicodeDecodeError as e:
        raise MalformedTrackingUrl(f"Undecodable {name} segment") from e
    if not value:
        raise MalformedTrackingUrl(f"Empty {name} segment")
    return value


def _segments_after(path: str, marker: str, expected: int) -> list[str]:
    """Return the `expected` raw segments that follow the marker segment."""
    if not path:
        raise MalformedTrackingUrl("Empty tracking path")

    # Accept full URLs as well as bare paths; drop query/fragment
    raw_path = urlsplit(path).path if "://" in path else path.split("?", 1)[0].split("#", 1)[0]
    parts = raw_path.split("/")

    try:
        index = parts.index(marker)
    except ValueError:
        raise MalformedTrackingUrl(f"Path has no '{marker}' segment")

    segments = parts[index + 1:]
    # A single trailing slash is tolerated
    if len(segments) == expected + 1 and segments[-1] == "":
        segments = segments[:-1]
    if len(segments) != expected:
        raise MalformedTrackingUrl(
            f"Expected {expected} segments after '{marker}', got {len(segments)}"
        )
    return segments


def parse_pixel_request(path: str) -> PixelRequest:
    """Inverse of build_pixel_url."""
    tracking_segment, recipient_segment = _segments_after(path, PIXEL_SEGMENT, 2)
    return PixelRequest(
        tracking_id=_decode(tracking_segment, "trackingId"),
        recipient_email=_decode(recipient_segment, "recipient"),
    )


def parse_click_request(path: str) -> ClickRequest:
    """
    Inverse of build_click_url.

    Destinations that are not absolute http(s) URLs are rejected so the
    redirect endpoint can never be turned into a javascript:/data: bounce.
    """
    tracking_segment, url_segment, recipient_segment = _segments_after(path, CLICK_SEGMENT, 3)
    destination = _decode(url_segment, "url")

    scheme = urlsplit(destination).scheme.lower()
    if scheme not in ("http", "https"):
        raise MalformedTrackingUrl(f"Unsupported destination scheme: {scheme or 'none'}")

    return ClickRequest(
        tracking_id=_decode(tracking_segment, "trackingId"),
        recipient_email=_decode(recipient_segment, "recipient"),
        destination_url=destination,
    )
