"""
URL handling for ?url= and ?errorredirect=

Public URLs are given without a scheme:
- 'example.com/a.jpg'      -> http://example.com/a.jpg
- 'ssl:example.com/a.jpg'  -> https://example.com/a.jpg
Anything that already starts with 'http:' or 'https:' is rejected.
"""

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# Characters allowed anywhere in a URI (RFC 3986 unreserved + reserved + '%')
_URI_CHARS_RE = re.compile(r"^[A-Za-z0-9\-._~:/?#\[\]@!$&'()*+,;=%]+$")
_PERCENT_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def parse_url(url: str) -> str:
    """
    Normalize a scheme-less public URL into an absolute http(s) URL.

    Args:
        url: Raw value of the query parameter

    Returns:
        Absolute URL string

    Raises:
        ValueError: If the URL is not acceptable
    """
    if not url:
        raise ValueError("Empty URL")

    if url.startswith("ssl:"):
        candidate = "https://" + url[4:].lstrip("/")
    elif url.startswith("http:") or url.startswith("https:"):
        raise ValueError("Invalid URL")
    else:
        candidate = "http://" + url.lstrip("/")

    _validate(candidate)
    return candidate


def _validate(url: str) -> None:
    if not _URI_CHARS_RE.match(url) or _PERCENT_RE.search(url):
        raise ValueError("URL contains invalid characters")

    parts = urlsplit(url)
    if not parts.hostname:
        raise ValueError("Invalid URL host")
    # Raises ValueError on a non-numeric or out-of-range port
    parts.port


def sanitize_error_redirect(url: str) -> str:
    """
    Remove any nested 'errorredirect' pair from a redirect target.

    Args:
        url: Absolute URL returned by parse_url

    Returns:
        URL without errorredirect in its query string
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    pairs = parse_qsl(parts.query, keep_blank_values=True)
    if not any(key == "errorredirect" for key, _ in pairs):
        return url

    kept = [(key, value) for key, value in pairs if key != "errorredirect"]
    return urlunsplit(parts._replace(query=urlencode(kept)))


def path_extension(url: str) -> str:
    """Lowercase file extension of the URL path, without the dot ('' if none)."""
    path = urlsplit(url).path
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()
