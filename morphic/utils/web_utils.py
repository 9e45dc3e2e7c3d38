from __future__ import annotations

from urllib.parse import quote, urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def sanitize_url(url: str) -> str:
    """Trim and percent-encode characters that break links in rendered citations."""
    return quote(url.strip(), safe=":/?#[]@!$&'()*+,;=%~-._")
