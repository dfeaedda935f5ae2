"""Content normalizer — reduces raw email subjects and bodies to the text worth classifying.

Each pass is a pure text transform. Passes run in a fixed order: HTML goes first
because quote markers and signatures can sit inside tags, and truncation goes last.
"""

import math
import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

DEFAULT_MAX_LENGTH = 3000

_HTML_TAG = re.compile(r"<\s*/?\s*[a-zA-Z][a-zA-Z0-9]*(?:\s[^<>]*)?/?\s*>")

_INLINE_PATTERNS = [
    re.compile(r"data:[a-z]+/[a-z0-9.+-]+;base64,[A-Za-z0-9+/=]+", re.IGNORECASE),
    re.compile(r"\bcid:\S+", re.IGNORECASE),
    re.compile(r"style\s*=\s*(\"[^\"]*\"|'[^']*')", re.IGNORECASE),
    re.compile(r"\[image:[^\]]*\]", re.IGNORECASE),
    re.compile(r"\b(?:https?://|www\.)\S+", re.IGNORECASE),
]

# Markers after which everything is thread history
_THREAD_CUTS = [
    re.compile(r"^\s*-{2,}\s*Original Message\s*-{2,}.*", re.IGNORECASE | re.MULTILINE | re.DOTALL),
    re.compile(r"^\s*On\b[^\n]{0,200}\bwrote:\s*$.*", re.IGNORECASE | re.MULTILINE | re.DOTALL),
    re.compile(r"^\s*From:[^\n]*\n\s*(?:Sent|Date):.*", re.IGNORECASE | re.MULTILINE | re.DOTALL),
    re.compile(r"^\s*-{2,}\s*Forwarded message\s*-{2,}.*", re.IGNORECASE | re.MULTILINE | re.DOTALL),
]
_QUOTED_LINE = re.compile(r"^\s*>.*$\n?", re.MULTILINE)

_SIGNATURE_CUTS = [
    re.compile(r"^-- ?$.*", re.MULTILINE | re.DOTALL),
    re.compile(r"^\s*Sent from my [^\n]*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*Get Outlook for [^\n]*$", re.IGNORECASE | re.MULTILINE),
]

_SIGN_OFF = re.compile(
    r"^(?:best(?: regards)?|kind regards|warm regards|regards|cheers|thanks(?: and regards)?|"
    r"thank you|many thanks|sincerely|yours truly)\s*[,!.]?$",
    re.IGNORECASE,
)
SIGNATURE_MAX_LINES = 6
SIGNATURE_MAX_LINE_CHARS = 60
_SENTENCE_END = re.compile(r"[.!?]$")

_DISCLAIMER = re.compile(
    r"(confidentiality notice|intended (?:solely )?for the (?:use of the )?(?:addressee|intended recipient)|"
    r"intended recipient|if you have received this (?:e-?mail|message) in error|"
    r"this (?:e-?mail|message) (?:and any attachments )?(?:is|may be) (?:privileged|confidential)|"
    r"please consider the environment before printing|unsubscribe from (?:this|these) (?:list|emails))",
    re.IGNORECASE,
)

_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\u200b-\u200f\ufeff]")
_SUBJECT_PREFIX = re.compile(r"^\s*(?:(?:re|fw|fwd|aw|wg)\s*(?:\[\d+\])?\s*:\s*)+", re.IGNORECASE)


@dataclass(frozen=True)
class NormalizeOptions:
    strip_html: bool = True
    remove_inline_content: bool = True
    remove_quoted_replies: bool = True
    remove_signatures: bool = True
    remove_disclaimers: bool = True
    max_length: int = DEFAULT_MAX_LENGTH


DEFAULT_OPTIONS = NormalizeOptions()


def strip_html(text: str) -> str:
    """Convert HTML to text. Text without tags passes through untouched, entities included.

    Markup that only appeared once entities were decoded (``&lt;b&gt;``) is escaped
    again, so the result never reads as HTML on a second pass.
    """
    if not _HTML_TAG.search(text):
        return text
    soup = BeautifulSoup(text, "lxml")
    for element in soup(["script", "style", "head", "title", "meta"]):
        element.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return _HTML_TAG.sub(_escape_tag, soup.get_text(separator="\n"))


def _escape_tag(match: re.Match) -> str:
    return match.group(0).replace("<", "&lt;").replace(">", "&gt;")


def remove_inline_content(text: str) -> str:
    for pattern in _INLINE_PATTERNS:
        text = pattern.sub(" ", text)
    return text


def remove_quoted_replies(text: str) -> str:
    for pattern in _THREAD_CUTS:
        text = pattern.sub("", text)
    return _QUOTED_LINE.sub("", text)


def remove_signatures(text: str) -> str:
    for pattern in _SIGNATURE_CUTS:
        text = pattern.sub("", text)
    return _cut_sign_off(text)


def _is_signature_line(line: str) -> bool:
    """Name, title, company or phone lines: short, and not a sentence."""
    line = line.strip()
    if len(line) > SIGNATURE_MAX_LINE_CHARS:
        return False
    return not (_SENTENCE_END.search(line) and len(line.split()) >= 4)


def _cut_sign_off(text: str) -> str:
    """Drop a closing sign-off ("Best regards,") and the signature block under it.

    Only the earliest sign-off followed by at most SIGNATURE_MAX_LINES signature-like
    lines counts; a sign-off with real message text after it stays.
    """
    lines = text.split("\n")
    for i in range(max(1, len(lines) - SIGNATURE_MAX_LINES - 1), len(lines)):
        if not _SIGN_OFF.match(lines[i].strip()):
            continue
        if all(_is_signature_line(line) for line in lines[i + 1:]):
            return "\n".join(lines[:i])
    return text


def remove_disclaimers(text: str) -> str:
    paragraphs = re.split(r"\n\s*\n", text)
    return "\n\n".join(p for p in paragraphs if not _DISCLAIMER.search(p))


def normalize_whitespace(text: str) -> str:
    text = _CONTROL.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\xa0", " ")
    lines = [re.sub(r"[ \t\f\v]+", " ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_subject(subject: str) -> str:
    """Strip reply/forward prefixes, control characters and extra whitespace."""
    if not subject:
        return ""
    subject = _CONTROL.sub("", subject)
    subject = re.sub(r"\s+", " ", subject).strip()
    return _SUBJECT_PREFIX.sub("", subject).strip()


def clean_body(body: str, options: NormalizeOptions = DEFAULT_OPTIONS) -> str:
    if not body:
        return ""
    text = body
    if options.strip_html:
        text = strip_html(text)
    if options.remove_inline_content:
        text = remove_inline_content(text)

    # Truncating, or cutting one tail, can expose another cut; repeat until nothing changes
    while True:
        cleaned = _cut_and_trim(text, options)
        if cleaned == text:
            return cleaned
        text = cleaned


def _cut_and_trim(text: str, options: NormalizeOptions) -> str:
    if options.remove_quoted_replies:
        text = remove_quoted_replies(text)
    if options.remove_signatures:
        text = remove_signatures(text)
    if options.remove_disclaimers:
        text = remove_disclaimers(text)
    text = normalize_whitespace(text)
    if options.max_length and len(text) > options.max_length:
        text = text[:options.max_length].rstrip()
    return text


def normalize(
    raw_subject: Optional[str],
    raw_body: Optional[str],
    options: NormalizeOptions = DEFAULT_OPTIONS,
) -> tuple[str, str]:
    """Return (clean_subject, clean_body) for a raw email."""
    return clean_subject(raw_subject or ""), clean_body(raw_body or "", options)


# --- Token helpers ---

def estimate_tokens(text: Optional[str]) -> int:
    """Rough token count: one token per four characters."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def smart_truncate(text: str, max_chars: int) -> str:
    """Keep the opening 60% and closing 20% of the budget when text is too long."""
    if len(text) <= max_chars:
        return text
    head = int(max_chars * 0.6)
    tail = int(max_chars * 0.2)
    return f"{text[:head]}\n\n[...content truncated...]\n\n{text[-tail:]}"


def context_window(body: str) -> int:
    """Character budget for a body: short mail gets less context than long threads."""
    if len(body) < 500:
        return 1000
    if len(body) < 2000:
        return 2000
    return 3000
