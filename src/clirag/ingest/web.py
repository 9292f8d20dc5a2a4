"""Web page fetcher with SSRF protection.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Timeout: 30 seconds (connect + read).
- Max redirects: 3.
"""

from __future__ import annotations

import ipaddress
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

from clirag.ingest.chunker import Document

_USER_AGENT = "clirag/0.1"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}
_STRIP_TAGS = ["script", "style", "nav", "footer", "header", "noscript"]

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class SsrfError(ValueError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass
class Page:
    """A fetched page: the document plus the raw HTML (for link extraction)."""

    document: Document
    html: str


def fetch_document(url: str) -> Document:
    """Fetch *url* and return it as a plain-text Document.

    Raises:
        ValueError: Bad scheme, unsupported Content-Type, oversized body, or no text.
        SsrfError: The host resolves to a private or reserved address.
        RuntimeError: Network failure or too many redirects.
    """
    return fetch_page(url).document


def fetch_page(url: str) -> Page:
    """Validate, fetch, and convert *url*."""
    validate_scheme(url)
    check_ssrf(url)
    raw, content_type = _fetch(url)
    body = raw.decode("utf-8", errors="replace")
    document = parse_document(url, body, content_type)
    if not document.text.strip():
        raise ValueError(f"No text content found at '{url}'.")
    return Page(document=document, html=body if content_type == "text/html" else "")


def parse_document(url: str, body: str, content_type: str = "text/html") -> Document:
    """Convert a fetched body to a Document (title, meta description, plain text)."""
    if content_type == "text/plain":
        return Document(url=url, title=_title_from_url(url), text=_clean_lines(body))

    soup = BeautifulSoup(body, "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    meta = soup.find("meta", attrs={"name": "description"})
    description = (meta.get("content") or "").strip() if meta else ""

    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()
    if soup.head is not None:
        soup.head.decompose()

    text = _clean_lines(_h2t.handle(str(soup)))
    return Document(url=url, title=title or "Untitled", text=text, description=description)


def validate_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ValueError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )


def check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges.

    Raises SsrfError if any resolved address is private, loopback,
    link-local, or otherwise reserved.
    """
    parsed = urllib.parse.urlparse(url)
    hostname = parsed.hostname
    if not hostname:
        raise ValueError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise ValueError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        addr_str = addrinfo[4][0]
        try:
            ip = ipaddress.ip_address(addr_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


def _fetch(url: str) -> tuple[bytes, str]:
    """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

    Returns (body_bytes, content_type_without_params).
    """
    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

    try:
        response: HTTPResponse = opener.open(request, timeout=_TIMEOUT)
    except urllib.error.URLError as exc:
        raise RuntimeError(f"Failed to fetch URL '{url}': {exc}") from exc

    raw_ct = response.headers.get("Content-Type", "text/html")
    ct = raw_ct.split(";")[0].strip().lower()
    if ct not in _ALLOWED_CONTENT_TYPES:
        raise ValueError(
            f"Unsupported Content-Type '{ct}' for URL '{url}'. "
            f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
        )

    body = response.read(_MAX_BYTES + 1)
    if len(body) > _MAX_BYTES:
        raise ValueError(
            f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
        )

    return body, ct


def _clean_lines(text: str) -> str:
    """Trim every line and drop blank ones."""
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def _title_from_url(url: str) -> str:
    path = urllib.parse.urlparse(url).path.rstrip("/")
    return path.rsplit("/", 1)[-1] or url


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise RuntimeError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        return super().redirect_request(req, fp, code, msg, headers, newurl)
