from __future__ import annotations

import re
from urllib.parse import urljoin, urlsplit, urlunsplit

_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")
_DUPLICATE_SLASHES = re.compile(r"/{2,}")
FETCHABLE_SCHEMES: frozenset[str] = frozenset({"http", "https"})


def resolve_image_url(base: str, ref: str) -> str | None:
    """Make an image reference absolute against the page it was found on.

    Returns `None` when the reference cannot be turned into a fetchable URL:
    the base page URL is unusable, an absolute reference lacks a host, or the
    result would use a scheme other than http or https.
    """
    reference = ref.strip()
    if not reference:
        return ref

    if _SCHEME_PATTERN.match(reference) and not reference.startswith("//"):
        return _checked_absolute(reference)

    parsed_base = _parse_base(base)
    if parsed_base is None:
        return None
    scheme, netloc, path, query = parsed_base

    if reference.startswith("//"):
        return _checked_absolute(f"{scheme}:{reference}")
    if reference.startswith("/"):
        return f"{scheme}://{netloc}{reference}"

    normalized_base = urlunsplit((scheme, netloc, path, query, ""))
    return urljoin(normalized_base, reference)


def _checked_absolute(reference: str) -> str | None:
    try:
        parsed = urlsplit(reference)
    except ValueError:
        return None
    if parsed.scheme.lower() not in FETCHABLE_SCHEMES or not parsed.netloc:
        return None
    return reference


def _parse_base(base: str) -> tuple[str, str, str, str] | None:
    try:
        parsed = urlsplit(base.strip())
        # Accessing the port validates it.
        _ = parsed.port
    except ValueError:
        return None
    if parsed.scheme.lower() not in FETCHABLE_SCHEMES or not parsed.netloc:
        return None
    path = _DUPLICATE_SLASHES.sub("/", parsed.path) or "/"
    return parsed.scheme.lower(), parsed.netloc, path, parsed.query
