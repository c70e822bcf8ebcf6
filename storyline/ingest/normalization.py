from __future__ import annotations

import re
from urllib.parse import urlsplit

PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)
WWW_RE = re.compile(r"^www\.", re.IGNORECASE)
TRAILING_SLASH_RE = re.compile(r"/$")
TRACKING_PARAM_RE = re.compile(r"[?&](utm_[^&]*|fbclid=[^&]*|gclid=[^&]*|ref=[^&]*|source=[^&]*)")
DANGLING_SEPARATOR_RE = re.compile(r"[?&]$")
FRAGMENT_RE = re.compile(r"#.*$")
TITLE_STRIP_RE = re.compile(r"[^\w\s]")
WHITESPACE_RE = re.compile(r"\s+")


def _normalize_once(url: str) -> str:
    url = PROTOCOL_RE.sub("", url)
    url = WWW_RE.sub("", url)
    url = TRAILING_SLASH_RE.sub("", url)
    url = TRACKING_PARAM_RE.sub("", url)
    url = DANGLING_SEPARATOR_RE.sub("", url)
    return FRAGMENT_RE.sub("", url).strip()


def normalize_url(raw_url: str | None) -> str | None:
    """Comparison key for an article URL.

    ``HTTPS://WWW.Example.com/a/?utm_source=x#frag`` and ``example.com/a`` map
    to the same key. Stripping one part can expose another (a slash before a
    fragment, a space before a slash), so the rules are applied until the
    value stops changing.
    """
    if raw_url is None or not raw_url.strip():
        return None

    current = raw_url.strip().lower()
    while True:
        stripped = _normalize_once(current)
        if stripped == current:
            return stripped
        current = stripped


def source_domain(raw_url: str | None) -> str:
    if not raw_url:
        return ""
    value = raw_url.strip()
    if "://" not in value:
        value = f"//{value}"
    host = (urlsplit(value).hostname or "").lower().strip(".")
    return WWW_RE.sub("", host)


def normalize_title(title: str | None) -> str:
    stripped = TITLE_STRIP_RE.sub("", (title or "").strip().lower())
    return WHITESPACE_RE.sub(" ", stripped).strip()
