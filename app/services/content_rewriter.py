"""
Per-recipient content rewriting.

Every outbound http(s) link is swapped for a click-tracking redirect and
an invisible open beacon is added to the HTML part. The recipient address
is embedded in both, so no two recipients receive identical bytes.
"""

import html
import re
from dataclasses import dataclass
from typing import Optional

from app.services.tracking_urls import build_click_url, build_pixel_url

# A URL runs until whitespace, a quote or an angle bracket
URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
BODY_CLOSE_PATTERN = re.compile(r"</body\s*>", re.IGNORECASE)

BEACON_TEMPLATE = '<img src="{src}" width="1" height="1" style="display:none;" alt="" />'
HTML_WRAPPER_TEMPLATE = (
    "<html>\n"
    "  <body>\n"
    '    <pre style="font-family: inherit; white-space: pre-wrap;">{text}</pre>\n'
    "    {beacon}\n"
    "  </body>\n"
    "</html>"
)


@dataclass(frozen=True)
class RenderedContent:
    """Recipient-specific text and HTML bodies."""
    text: str
    html: str


def rewrite_links(text: str, tracking_id: str, recipient_email: str) -> str:
    """Replace each http(s) URL in text with a click-tracking URL wrapping it."""
    if not text:
        return text
    return URL_PATTERN.sub(
        lambda match: build_click_url(tracking_id, recipient_email, match.group(0)),
        text
    )


def build_beacon(tracking_id: str, recipient_email: str) -> str:
    pixel_url = build_pixel_url(tracking_id, recipient_email)
    return BEACON_TEMPLATE.format(src=html.escape(pixel_url, quote=True))


def append_open_beacon(html_body: str, tracking_id: str, recipient_email: str) -> str:
    """
    Insert the open beacon right before the last </body>, or append it
    to the end of the document when there is no closing body tag.
    """
    beacon = build_beacon(tracking_id, recipient_email)

    matches = list(BODY_CLOSE_PATTERN.finditer(html_body))
    if not matches:
        return html_body + beacon

    position = matches[-1].start()
    return html_body[:position] + beacon + html_body[position:]


def render_for_recipient(
    body: str,
    html_body: Optional[str],
    tracking_id: str,
    recipient_email: str
) -> RenderedContent:
    """
    Produce the copy of a message that one recipient will receive.

    Links are rewritten before the beacon is added so the pixel URL is
    never wrapped. Without an HTML body, a minimal HTML document is built
    around the rewritten text because opens are only detectable when the
    client renders HTML.
    """
    text = rewrite_links(body, tracking_id, recipient_email)

    if html_body:
        rewritten_html = rewrite_links(html_body, tracking_id, recipient_email)
        return RenderedContent(
            text=text,
            html=append_open_beacon(rewritten_html, tracking_id, recipient_email)
        )

    wrapped = HTML_WRAPPER_TEMPLATE.format(
        text=html.escape(text, quote=False),
        beacon=build_beacon(tracking_id, recipient_email)
    )
    return RenderedContent(text=text, html=wrapped)
