"""
Media helpers for outbound sends.

- MIME classification into the protocol's media kinds
- bounded download of media referenced by URL (stdlib HTTP off the loop)
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import posixpath
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Literal

from .exceptions import MediaFetchError

logger = logging.getLogger(__name__)

MediaKind = Literal["image", "video", "audio", "document"]

_USER_AGENT = "wagateway/0.1"
_CHUNK = 64 * 1024


@dataclass(frozen=True, slots=True)
class FetchedMedia:
    data: bytes
    mimetype: str
    filename: str | None = None


def media_kind(mimetype: str | None) -> MediaKind:
    mt = (mimetype or "").lower()
    if mt.startswith("image/"):
        return "image"
    if mt.startswith("video/"):
        return "video"
    if mt.startswith("audio/"):
        return "audio"
    return "document"


def filename_from_url(url: str) -> str | None:
    """Basename of the URL path when it looks like a file name."""

    path = urllib.parse.urlsplit(url).path
    name = urllib.parse.unquote(posixpath.basename(path))
    if name and "." in name:
        return name
    return None


def guess_mimetype(filename: str | None, default: str = "application/octet-stream") -> str:
    if filename:
        mt, _ = mimetypes.guess_type(filename)
        if mt:
            return mt
    return default


def _fetch(url: str, *, timeout_s: float, max_bytes: int) -> FetchedMedia:
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT}, method="GET")
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        content_type = resp.headers.get_content_type() if resp.headers.get("Content-Type") else None
        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = resp.read(_CHUNK)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise ValueError(f"response larger than {max_bytes} bytes")
            chunks.append(chunk)

    filename = filename_from_url(url)
    mimetype = content_type or guess_mimetype(filename)
    return FetchedMedia(data=b"".join(chunks), mimetype=mimetype, filename=filename)


async def fetch_media(url: str, *, timeout_s: float, max_bytes: int) -> FetchedMedia:
    """
    Download `url` into memory.

    Raises `MediaFetchError` for non-http(s) URLs, HTTP/network failures,
    oversized bodies and timeouts.
    """

    scheme = urllib.parse.urlsplit(url).scheme.lower()
    if scheme not in ("http", "https"):
        raise MediaFetchError(url, f"unsupported URL scheme {scheme!r}")
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_fetch, url, timeout_s=timeout_s, max_bytes=max_bytes),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError as e:
        raise MediaFetchError(url, "timed out") from e
    except urllib.error.HTTPError as e:
        raise MediaFetchError(url, f"HTTP {e.code}") from e
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise MediaFetchError(url, str(e)) from e
