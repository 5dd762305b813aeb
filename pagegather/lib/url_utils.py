"""URL helpers shared by the navigation runner and the error classifier."""

from urllib.parse import urldefrag, urlparse, urlunparse


def normalize_url(url: str) -> str:
    """Normalize a requested URL, adding a scheme when none was given.

    Args:
        url: URL as supplied by the caller

    Returns:
        Normalized URL string
    """
    url = url.strip()
    parsed = urlparse(url)
    if not parsed.scheme:
        parsed = urlparse(f"http://{url}")

    path = parsed.path or "/"
    return urlunparse(parsed._replace(path=path, scheme=parsed.scheme.lower(),
                                      netloc=parsed.netloc.lower()))


def equal_with_excluded_fragments(url_a: str, url_b: str) -> bool:
    """Compare two URLs ignoring their fragments and a trailing root slash."""
    def _clean(url: str) -> str:
        without_fragment = urldefrag(url)[0]
        parsed = urlparse(without_fragment)
        if parsed.scheme and not parsed.path:
            parsed = parsed._replace(path="/")
        return urlunparse(parsed)

    return _clean(url_a) == _clean(url_b)


def get_origin(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL, or empty string if it has none."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"
