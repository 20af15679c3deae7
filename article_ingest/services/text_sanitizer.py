from __future__ import annotations

import codecs
import re
from dataclasses import dataclass

PDF_CONTENT_TYPE = "application/pdf"
WORDS_PER_MINUTE = 200

_TAG_PATTERN = re.compile(r"<[^>]*>")
_WORD_PATTERN = re.compile(r"\w+")


@dataclass(frozen=True)
class EncodingGuess:
    """Outcome of guessing the legacy encoding of a raw title.

    `text` is `None` when no candidate encoding decoded the bytes cleanly.
    """

    text: str | None
    encoding: str | None

    @property
    def matched(self) -> bool:
        return self.text is not None


def title_bytes(title: str | bytes) -> bytes:
    """Recover the raw bytes behind a title.

    Strings produced with `surrogateescape` give back their original bytes;
    other lone surrogates are kept as (invalid) UTF-8 so they get stripped.
    """
    if isinstance(title, bytes):
        return title
    try:
        return title.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        return title.encode("utf-8", "surrogatepass")


def strip_invalid_utf8(raw: bytes) -> str:
    return raw.decode("utf-8", "ignore")


def guess_pdf_title_encoding(raw: bytes) -> EncodingGuess:
    """Try UTF-8, then BOM-marked UTF-16BE, then Windows-1252."""
    try:
        return EncodingGuess(text=raw.decode("utf-8"), encoding="utf-8")
    except UnicodeDecodeError:
        pass

    if raw.startswith(codecs.BOM_UTF16_BE):
        try:
            return EncodingGuess(
                text=raw[len(codecs.BOM_UTF16_BE) :].decode("utf-16-be"),
                encoding="utf-16-be",
            )
        except UnicodeDecodeError:
            pass

    try:
        return EncodingGuess(text=raw.decode("cp1252"), encoding="cp1252")
    except UnicodeDecodeError:
        return EncodingGuess(text=None, encoding=None)


def sanitize_content_title(title: str | bytes | None, content_type: str | None) -> str | None:
    """Return a clean UTF-8 title; never raises.

    PDF titles frequently come in a legacy encoding and are transcoded first.
    Anything still invalid afterwards is dropped.
    """
    if title is None:
        return None

    raw = title_bytes(title)
    if _is_pdf(content_type):
        guess = guess_pdf_title_encoding(raw)
        if guess.matched:
            assert guess.text is not None
            return strip_invalid_utf8(title_bytes(guess.text))
        return _fallback_strip(raw)
    return strip_invalid_utf8(raw)


def _fallback_strip(raw: bytes) -> str:
    return strip_invalid_utf8(raw)


def _is_pdf(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == PDF_CONTENT_TYPE


def html_to_text(html: str | None) -> str:
    if not html:
        return ""
    return _TAG_PATTERN.sub(" ", html)


def estimate_reading_time(html: str | None) -> int:
    """Whole minutes needed to read `html`, at 200 words per minute."""
    words = _WORD_PATTERN.findall(html_to_text(html))
    return len(words) // WORDS_PER_MINUTE
