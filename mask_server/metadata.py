from __future__ import annotations

"""
Token metadata + remote image access.

Usage:
    svc = MetadataService()  # base URL defaults to the KRG metadata endpoint
    traits = svc.get_traits("123")      # -> [{"trait_type": ..., "value": ...}, ...]
    image = svc.get_image_url("123")    # -> "https://..." or None

    proxy = ImageProxy(allowed_hosts=["*.financie.io"])
    upstream = proxy.open("https://img.financie.io/x.png")  # streaming requests.Response
"""

import logging
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit

import requests

from mask_server.config import METADATA_BASE_URL


log = logging.getLogger(__name__)

REDIRECT_CODES = (301, 302, 303, 307, 308)


class MetadataFetchError(Exception):
    """Remote fetch failed; `status_code` is what the HTTP layer should answer with."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class InvalidImageUrl(ValueError):
    pass


class ProxyNotAllowed(Exception):
    pass


class MetadataService:
    def __init__(
        self,
        base_url: str = METADATA_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        """
        Params:
            base_url: prefix; `<base_url><tokenId>.json` is requested
            session: optional requests.Session for connection reuse
            timeout: per-request timeout in seconds
        """
        self.base_url = base_url
        self.session = session or requests.Session()
        self.timeout = timeout

    # ----------------------------
    # Public API
    # ----------------------------
    def build_url(self, token_id: str) -> str:
        return f"{self.base_url}{token_id}.json"

    def fetch(self, token_id: str) -> Dict[str, Any]:
        """
        Metadata document for one token.

        Raises:
            MetadataFetchError: upstream status for non-2xx, 500 for network/decode failures.
        """
        url = self.build_url(token_id)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            log.exception("Metadata request failed for token %s: %s", token_id, e)
            raise MetadataFetchError(500, "metadata request failed") from e

        if not r.ok:
            log.warning("Metadata request failed: %s %s", r.status_code, url)
            raise MetadataFetchError(r.status_code, "failed to fetch metadata")
        try:
            data = r.json()
        except ValueError as e:
            log.exception("Metadata for token %s is not JSON", token_id)
            raise MetadataFetchError(500, "metadata is not valid JSON") from e
        if not isinstance(data, dict):
            raise MetadataFetchError(500, "metadata is not a JSON object")
        return data

    def get_traits(self, token_id: str) -> List[Dict[str, Any]]:
        traits = self.fetch(token_id).get("traits")
        return traits if isinstance(traits, list) else []

    def get_image_url(self, token_id: str) -> Optional[str]:
        image = self.fetch(token_id).get("image")
        return str(image) if image else None


@dataclass
class ImageProxy:
    """
    Fetches remote images for the browser (canvas needs same-origin pixels).
    Only http(s) URLs whose host matches `allowed_hosts` (fnmatch patterns) are fetched.
    Redirects are followed by hand, at most `max_redirects` hops, and every hop
    must pass the same allow-list.
    """
    allowed_hosts: Sequence[str]
    session: Optional[requests.Session] = None
    timeout: float = 15.0
    max_redirects: int = 5

    def __post_init__(self) -> None:
        self.session = self.session or requests.Session()

    def is_allowed(self, url: str) -> bool:
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError:
            return False
        if parts.scheme not in ("http", "https") or not hostname:
            return False
        host = hostname.lower()
        return any(fnmatch(host, pattern.lower()) for pattern in self.allowed_hosts)

    def open(self, url: str) -> requests.Response:
        """
        Start a streaming GET. Caller must close the returned response.

        Raises:
            InvalidImageUrl: the URL cannot be parsed
            ProxyNotAllowed: scheme/host of the URL or of any redirect target not allow-listed
            MetadataFetchError: upstream non-2xx (its status), bad or too many redirects (502)
                or network failure (500)
        """
        try:
            urlsplit(url).hostname
        except ValueError as e:
            raise InvalidImageUrl(url) from e

        for _ in range(self.max_redirects + 1):
            if not self.is_allowed(url):
                log.warning("Proxy refused for host of %s", url)
                raise ProxyNotAllowed(url)
            try:
                r = self.session.get(  # type: ignore[union-attr]
                    url, stream=True, timeout=self.timeout, allow_redirects=False
                )
            except requests.RequestException as e:
                log.exception("Image proxy error: %s", e)
                raise MetadataFetchError(500, "server error") from e

            location = r.headers.get("location") if r.status_code in REDIRECT_CODES else None
            if location:
                r.close()
                try:
                    url = urljoin(url, location)
                except ValueError as e:
                    raise ProxyNotAllowed(location) from e
                log.info("Image proxy following redirect to %s", url)
                continue
            if r.status_code in REDIRECT_CODES:
                r.close()
                raise MetadataFetchError(502, "redirect without location")
            if not r.ok:
                r.close()
                raise MetadataFetchError(r.status_code, "failed to fetch image")
            return r

        log.warning("Image proxy gave up after %d redirects", self.max_redirects)
        raise MetadataFetchError(502, "too many redirects")
