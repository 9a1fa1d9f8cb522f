from __future__ import annotations

import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

import tldextract

logger = logging.getLogger(__name__)

UNKNOWN_HOST = "unknown"

MATCH_EXACT = "exact"
MATCH_SUBDOMAIN = "subdomain"

# Bundled public-suffix snapshot only; never fetch the list over the network.
_extract = tldextract.TLDExtract(suffix_list_urls=(), include_psl_private_domains=True)


def resolve_host(origin: Optional[str], page_url: Optional[str] = None) -> str:
    """Resolve the site a clipboard event came from.

    A full URL in ``origin`` wins; otherwise the page URL's hostname is used. Anything that
    fails to parse falls back to the raw origin string and finally to ``"unknown"``.
    """
    origin = origin or page_url or ""
    host = origin or UNKNOWN_HOST
    try:
        if origin and "://" in origin:
            host = urlparse(origin).hostname or UNKNOWN_HOST
        elif page_url:
            host = urlparse(page_url).hostname or UNKNOWN_HOST
    except ValueError:
        logger.debug("Could not parse origin %r, using it verbatim", origin)
        host = origin or UNKNOWN_HOST
    return host


def is_whitelisted(host: str, whitelist: Iterable[str]) -> bool:
    return host in set(whitelist or [])


def _covers_subdomain(entry: str, host: str) -> bool:
    if not host.endswith("." + entry):
        return False
    parts = _extract(entry)
    # "co.uk" or "github.io" must never act as a wildcard
    return bool(parts.domain and parts.suffix)


class WhitelistGuard:
    """Decides whether a verdict for a host should be suppressed."""

    def __init__(self, match_mode: str = MATCH_EXACT):
        if match_mode not in (MATCH_EXACT, MATCH_SUBDOMAIN):
            raise ValueError(f"Unknown whitelist match mode: {match_mode}")
        self.match_mode = match_mode

    def is_whitelisted(self, host: str, whitelist: Iterable[str]) -> bool:
        """True when the host is whitelisted and alerts must be suppressed."""
        entries = list(whitelist or [])
        if is_whitelisted(host, entries):
            return True
        if self.match_mode == MATCH_SUBDOMAIN:
            return any(_covers_subdomain(entry, host) for entry in entries if entry)
        return False
