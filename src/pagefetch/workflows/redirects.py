"""Manual redirect-chain resolution, independent of transport auto-redirect."""

from __future__ import annotations

import logging
from typing import Callable, Set
from urllib.parse import urlparse

import requests

from .fetch_defaults import (
    HDR_LOCATION,
    REDIRECT_ABSOLUTE_MARKERS,
    REDIRECT_LOOP_MAX,
    REDIRECT_STATUS_CODES,
)
from .fetcher_utils import normalize_url

logger = logging.getLogger(__name__)

__all__ = ["assemble_redirect_url", "is_redirect_status", "RedirectResolver"]


def is_redirect_status(status: int) -> bool:
    return status in REDIRECT_STATUS_CODES


def assemble_redirect_url(url: str, location: str) -> str:
    """Build the absolute redirect target for a ``Location`` value.

    A location containing ``http://``, ``https://`` or ``www.`` is already
    absolute and returned as is, except that one starting with ``www.``
    borrows the scheme of ``url``. Anything
    else is appended to ``url`` after making sure it ends with a slash.
    """

    location = (location or "").strip()
    lowered = location.lower()
    if any(marker in lowered for marker in REDIRECT_ABSOLUTE_MARKERS):
        host_first = location.lstrip("/")
        if "://" in location or not host_first.lower().startswith("www."):
            return location
        scheme = urlparse(url or "").scheme or "http"
        return f"{scheme}://{host_first}"
    base = url or ""
    if not base.endswith("/"):
        base = base + "/"
    return base + location


class RedirectResolver:
    """Follow ``Location`` headers hop by hop until a non-redirect answer.

    ``probe`` issues one request for a URL with auto-redirect disabled and
    returns the (possibly unread) response; the resolver closes it.
    """

    def __init__(
        self,
        probe: Callable[[str], requests.Response],
        *,
        max_hops: int = REDIRECT_LOOP_MAX,
    ) -> None:
        self._probe = probe
        self.max_hops = max_hops

    def resolve(self, url: str) -> str:
        """Return the final URL, or "" on a redirect cycle or when the hop cap runs out."""

        current = url
        visited: Set[str] = {normalize_url(url)}
        for _ in range(self.max_hops):
            response = self._probe(current)
            try:
                status = response.status_code
                location = response.headers.get(HDR_LOCATION)
                final_url = response.url or current
            finally:
                response.close()

            if not is_redirect_status(status):
                return final_url
            if not location:
                logger.warning("redirect status %s from %s without Location header", status, current)
                return current

            target = assemble_redirect_url(current, location)
            key = normalize_url(target)
            if key in visited:
                logger.info("redirect cycle detected at %s (from %s)", target, url)
                return ""
            visited.add(key)
            logger.debug("redirect %s -> %s (%s)", current, target, status)
            current = target

        logger.warning("redirect resolution for %s stopped after %d hops", url, self.max_hops)
        return ""
