from __future__ import annotations

from collections.abc import Mapping
from html.parser import HTMLParser


class _ImageReferenceParser(HTMLParser):
    """Collects `src` and `srcset` values of every `<img>` in document order."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.references: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag.lower() != "img":
            return
        attrs_map: dict[str, str] = {}
        for name, value in attrs:
            # First occurrence wins for duplicated attributes.
            attrs_map.setdefault(name.lower(), value or "")

        src = attrs_map.get("src", "")
        if src.strip():
            self.references.append(src)
        srcset = attrs_map.get("srcset", "")
        if srcset.strip():
            self.references.extend(parse_srcset_urls(srcset))


def parse_srcset_urls(value: str) -> list[str]:
    """Return the URL of every candidate in a `srcset` attribute.

    Candidates are comma separated; each one is a URL optionally followed by
    a width (`480w`) or density (`2x`) descriptor, which is discarded.
    """
    urls: list[str] = []
    position = 0
    length = len(value)
    while position < length:
        while position < length and (value[position].isspace() or value[position] == ","):
            position += 1
        if position >= length:
            break

        start = position
        while position < length and not value[position].isspace():
            position += 1
        url = value[start:position]

        if url.endswith(","):
            url = url.rstrip(",")
        else:
            depth = 0
            while position < length:
                character = value[position]
                position += 1
                if character == "(":
                    depth += 1
                elif character == ")" and depth > 0:
                    depth -= 1
                elif character == "," and depth == 0:
                    break

        if url:
            urls.append(url)
    return urls


def extract_image_urls(html: str | None) -> list[str]:
    """List unique image references of a document, first-seen order.

    Duplicates are removed on exact string match only; two spellings of the
    same URL are both kept. Malformed markup is parsed best-effort.
    """
    if not html:
        return []
    parser = _ImageReferenceParser()
    parser.feed(html)
    parser.close()

    unique: list[str] = []
    seen: set[str] = set()
    for reference in parser.references:
        if reference in seen:
            continue
        seen.add(reference)
        unique.append(reference)
    return unique


def first_image_url(html: str | None) -> str | None:
    references = extract_image_urls(html)
    if not references:
        return None
    return references[0]


def rewrite_image_references(html: str, replacements: Mapping[str, str]) -> str:
    """Swap original image references for their localized URLs.

    A reference holding `&` that is not found verbatim is retried in its
    `&amp;` encoded form, since parsed attribute values come back decoded.
    """
    rewritten = html
    # Longest first so a reference never clobbers a longer one containing it.
    for reference in sorted(replacements, key=len, reverse=True):
        local_url = replacements[reference]
        if not reference:
            continue
        target = reference
        if target not in rewritten and "&" in target:
            target = target.replace("&", "&amp;")
        rewritten = rewritten.replace(target, local_url)
    return rewritten
