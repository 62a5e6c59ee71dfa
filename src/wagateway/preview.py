"""
Best-effort link previews for outbound text.

Only the first http(s) URL in the text is considered. The fetch is bounded
by a timeout and any failure simply yields no preview; sending never waits
longer than the timeout because of it.
"""

from __future__ import annotations

import asyncio
import logging
import re
import urllib.request
from dataclasses import dataclass
from html.parser import HTMLParser

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"https?://[^\s]+")

_USER_AGENT = "Mozilla/5.0 (compatible; wagateway link preview)"
_MAX_HTML_BYTES = 512 * 1024


@dataclass(frozen=True, slots=True)
class LinkPreview:
    matched_text: str
    canonical_url: str
    title: str
    description: str | None = None

    def to_content(self) -> dict[str, str]:
        out = {
            "matched_text": self.matched_text,
            "canonical_url": self.canonical_url,
            "title": self.title,
        }
        if self.description:
            out["description"] = self.description
        return out


def first_url(text: str | None) -> str | None:
    m = URL_RE.search(text or "")
    return m.group(0) if m else None


class _MetaParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.meta: dict[str, str] = {}
        self.title_parts: list[str] = []
        self.canonical: str | None = None
        self._in_title = False

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        a = {k.lower(): (v or "") for k, v in attrs}
        if tag == "meta":
            name = (a.get("property") or a.get("name") or "").lower()
            if name and "content" in a:
                self.meta.setdefault(name, a["content"].strip())
        elif tag == "link" and a.get("rel", "").lower() == "canonical" and a.get("href"):
            self.canonical = a["href"]
        elif tag == "title":
            self._in_title = True

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self.title_parts.append(data)


def parse_preview(url: str, html: str) -> LinkPreview | None:
    p = _MetaParser()
    p.feed(html)
    p.close()

    title = p.meta.get("og:title") or p.meta.get("twitter:title") or "".join(p.title_parts).strip()
    if not title:
        return None
    description = (
        p.meta.get("og:description") or p.meta.get("twitter:description") or p.meta.get("description")
    )
    canonical = p.meta.get("og:url") or p.canonical or url
    return LinkPreview(
        matched_text=url, canonical_url=canonical, title=title, description=description or None
    )


def _fetch_html(url: str, timeout_s: float) -> str:
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT}, method="GET")
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        if resp.headers.get_content_type() not in ("text/html", "application/xhtml+xml"):
            return ""
        charset = resp.headers.get_content_charset() or "utf-8"
        return resp.read(_MAX_HTML_BYTES).decode(charset, errors="replace")


async def get_link_preview(text: str | None, *, timeout_s: float = 5.0) -> LinkPreview | None:
    url = first_url(text)
    if url is None:
        return None
    try:
        html = await asyncio.wait_for(asyncio.to_thread(_fetch_html, url, timeout_s), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.debug("link preview for %s timed out", url)
        return None
    except Exception as e:
        logger.debug("link preview for %s failed: %s", url, e)
        return None
    if not html:
        return None
    return parse_preview(url, html)
