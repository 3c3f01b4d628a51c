"""
Text Chunker - Retrieval-Friendly Splitting

Splits record summaries and uploaded file text into bounded segments.
"""

import re
import unicodedata
from typing import List, Optional

from finance_buddy.utils.logger import get_logger

logger = get_logger('rag.chunker')

DEFAULT_MAX_CHARS = 800

_PARAGRAPH_BREAK = re.compile(r'\n\s*\n')
# Terminal punctuation only counts when followed by whitespace or the end,
# so amounts like "45.00" stay in one sentence
_SENTENCE_END = re.compile(r'[.!?]+(?=\s|$)')

_ZWJ = '\u200d'


def _is_extender(ch: str) -> bool:
    """True for code points that attach to the preceding character"""
    cp = ord(ch)
    return (
        unicodedata.combining(ch) != 0
        or unicodedata.category(ch) in ('Mn', 'Mc', 'Me')
        or ch == _ZWJ
        or 0xFE00 <= cp <= 0xFE0F          # variation selectors
        or 0xE0100 <= cp <= 0xE01EF
        or 0x1F3FB <= cp <= 0x1F3FF        # skin tone modifiers
    )


def _is_regional_indicator(ch: str) -> bool:
    return 0x1F1E6 <= ord(ch) <= 0x1F1FF


def _hangul_type(ch: str) -> Optional[str]:
    """Jamo role of a Hangul code point: L, V, T, LV, LVT or None"""
    cp = ord(ch)
    if 0x1100 <= cp <= 0x115F or 0xA960 <= cp <= 0xA97C:
        return "L"
    if 0x1160 <= cp <= 0x11A7 or 0xD7B0 <= cp <= 0xD7C6:
        return "V"
    if 0x11A8 <= cp <= 0x11FF or 0xD7CB <= cp <= 0xD7FB:
        return "T"
    if 0xAC00 <= cp <= 0xD7A3:
        return "LV" if (cp - 0xAC00) % 28 == 0 else "LVT"
    return None


_HANGUL_JOINS = {
    "L": ("L", "V", "LV", "LVT"),
    "V": ("V", "T"),
    "LV": ("V", "T"),
    "T": ("T",),
    "LVT": ("T",),
}


def _joins_previous(text: str, i: int) -> bool:
    """True when text[i] continues the grapheme cluster of text[i - 1]"""
    prev, ch = text[i - 1], text[i]
    if _is_extender(ch) or prev == _ZWJ:
        return True
    if _is_regional_indicator(prev) and _is_regional_indicator(ch):
        # Flags pair up from the start of a run of indicators
        run = 0
        while i - run > 0 and _is_regional_indicator(text[i - run - 1]):
            run += 1
        return run % 2 == 1
    prev_type = _hangul_type(prev)
    return prev_type is not None and _hangul_type(ch) in _HANGUL_JOINS[prev_type]


def grapheme_prefix(text: str, max_chars: int) -> str:
    """
    First max_chars code points of text, backed off to a grapheme boundary.

    Combining marks, ZWJ emoji sequences, flag pairs and Hangul jamo
    syllables are kept whole.
    """
    cut = min(max_chars, len(text))
    while 0 < cut < len(text) and _joins_previous(text, cut):
        cut -= 1
    return text[:cut]


def _pack_words(text: str, limit: int) -> List[str]:
    """Greedy word packing; a word longer than limit becomes its own piece"""
    pieces: List[str] = []
    current = ""
    for word in text.split():
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= limit:
            current = f"{current} {word}"
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def _split_paragraph(paragraph: str, max_chars: int) -> List[str]:
    """Pack sentence fragments of an oversize paragraph into chunks"""
    sentences = [s.strip() for s in _SENTENCE_END.split(paragraph) if s.strip()]
    # One character is reserved for the period added on flush
    limit = max_chars - 1

    chunks: List[str] = []
    buf = ""
    for sentence in sentences:
        if len(sentence) > limit:
            if buf:
                chunks.append(buf + ".")
                buf = ""
            pieces = _pack_words(sentence, limit)
            chunks.extend(pieces[:-1])
            tail = pieces[-1]
            if len(tail) > limit:
                # Oversize single token: emitted whole, no period
                chunks.append(tail)
            else:
                buf = tail
            continue

        candidate = sentence if not buf else f"{buf}. {sentence}"
        if len(candidate) <= limit:
            buf = candidate
        else:
            chunks.append(buf + ".")
            buf = sentence

    if buf:
        chunks.append(buf + ".")
    return chunks


def chunk(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> List[str]:
    """
    Split text into chunks of at most max_chars characters.

    Paragraphs (blank-line separated) that fit are kept whole; longer ones
    are split on sentence boundaries and greedily repacked. A single token
    longer than max_chars is returned unsplit.

    Args:
        text: Raw text
        max_chars: Upper bound per chunk, in code points

    Returns:
        Non-empty list of chunks. Empty input yields [""]; input with no
        visible characters yields its own (bounded) prefix.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]

    chunks: List[str] = []
    for para in paragraphs:
        if not para:
            continue
        if len(para) <= max_chars:
            chunks.append(para)
        else:
            chunks.extend(_split_paragraph(para, max_chars))

    if not chunks:
        # Degenerate case: empty or whitespace-only input
        chunks = [grapheme_prefix(text, max_chars)]

    logger.debug(f"Split {len(text)} chars into {len(chunks)} chunks (max={max_chars})")
    return chunks


class Chunker:
    """Chunker bound to a default size, injected into the engine"""

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS):
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars

    def chunk(self, text: str, max_chars: Optional[int] = None) -> List[str]:
        return chunk(text, self.max_chars if max_chars is None else max_chars)
