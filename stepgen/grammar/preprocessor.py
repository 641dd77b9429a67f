"""
Grammar preprocessor - rewrite user patterns into a form the constraint compiler accepts.

Users write grammar patterns with regex habits: ``\\u00e9`` escapes, ``\\x41``
escapes and negated character classes such as ``[^"\\n]``. The downstream
constraint compilers either reject these or misbehave on a few characters,
so every pattern goes through ``preprocess`` before compilation.

Passes (applied in this order):
    1. Unicode escapes ``\\uXXXX`` become the character itself.
       U+2028 and U+2029 are dropped.
    2. Hex escapes ``\\xXX`` become the character with that ordinal.
       0x0B (VT), 0x0C (FF) and 0x85 (NEL) are dropped.
    3. Negated classes ``[^...]`` become positive classes over printable
       ASCII (0x20-0x7E) minus the excluded members.

Example:
    ```python
    from stepgen.grammar import preprocess

    preprocess(r"\\u0041")      # 'A'
    preprocess(r"\\u2028")      # ''
    preprocess("[^0-9]")        # '[ !"#$%&\\'()*+,\\-./:;<=>?@A-Z...]' (every printable but digits)
    ```

The function is total: anything it does not recognise is copied through
unchanged.
"""

import logging
import re
import string
from typing import FrozenSet, List, Optional, Set

logger = logging.getLogger(__name__)

# A surrogate pair is matched first so it collapses into one astral character.
UNICODE_ESCAPE = re.compile(
    r"\\u([dD][89abAB][0-9a-fA-F]{2})\\u([dD][c-fC-F][0-9a-fA-F]{2})"
    r"|\\u([0-9a-fA-F]{4})"
)
HEX_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")

DROPPED_CODEPOINTS: FrozenSet[int] = frozenset({0x2028, 0x2029})
DROPPED_BYTES: FrozenSet[int] = frozenset({0x0B, 0x0C, 0x85})

PRINTABLE_ASCII = range(0x20, 0x7F)
CLASS_SPECIALS = frozenset("\\]-^")

_DIGITS = frozenset(ord(c) for c in string.digits)
_WORD = frozenset(ord(c) for c in string.ascii_letters + string.digits + "_")
_SPACE = frozenset(ord(c) for c in " \t\n\r\f")

# Members named by a backslash escape inside a negated class. Any other
# escaped character stands for itself.
_CLASS_ESCAPES = {
    "r": frozenset({ord("\r")}),
    "n": frozenset({ord("\n")}),
    "t": frozenset({ord("\t")}),
    "\\": frozenset({ord("\\")}),
    "]": frozenset({ord("]")}),
    "d": _DIGITS,
    "s": _SPACE,
    "w": _WORD,
}


def preprocess(pattern: str) -> str:
    """
    Rewrite a grammar pattern for the constraint compiler.

    Args:
        pattern: Pattern as supplied by the caller

    Returns:
        str: Pattern with escapes decoded and negated classes made positive
    """
    result = process_unicode_escapes(pattern)
    result = process_hex_escapes(result)
    result = process_negated_classes(result)

    if result != pattern:
        logger.debug(f"Preprocessed pattern: {pattern!r} -> {result!r}")

    return result


def process_unicode_escapes(text: str) -> str:
    """Replace ``\\uXXXX`` escapes with the characters they name."""

    def _replace(match: "re.Match") -> str:
        high, low, single = match.groups()
        if single is None:
            codepoint = 0x10000 + ((int(high, 16) - 0xD800) << 10) + (int(low, 16) - 0xDC00)
        else:
            codepoint = int(single, 16)

        if codepoint in DROPPED_CODEPOINTS:
            return ""
        if 0xD800 <= codepoint <= 0xDFFF:
            # Lone surrogate: not encodable, leave the escape as written.
            return match.group(0)
        return chr(codepoint)

    return UNICODE_ESCAPE.sub(_replace, text)


def process_hex_escapes(text: str) -> str:
    """Replace ``\\xXX`` escapes with the characters they name."""

    def _replace(match: "re.Match") -> str:
        value = int(match.group(1), 16)
        if value in DROPPED_BYTES:
            return ""
        return chr(value)

    return HEX_ESCAPE.sub(_replace, text)


def process_negated_classes(text: str) -> str:
    """
    Replace every ``[^...]`` with the equivalent positive class.

    Escaped characters outside a class are copied as a pair, so ``\\[^`` is
    never taken for the start of a class. A ``[^`` without a matching ``]``
    is copied unchanged.
    """
    out: List[str] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch == "\\" and i + 1 < n:
            out.append(text[i:i + 2])
            i += 2
            continue

        if ch == "[" and i + 1 < n and text[i + 1] == "^":
            end = find_class_end(text, i + 2)
            if end is not None:
                body = text[i + 2:end]
                out.append(build_positive_class(excluded_members(body)))
                i = end + 1
                continue

        out.append(ch)
        i += 1

    return "".join(out)


def find_class_end(text: str, start: int) -> Optional[int]:
    """
    Find the ``]`` closing a class whose body starts at ``start``.

    The class ends at the first unescaped ``]``; a ``[`` inside the body is
    a literal member.

    Returns:
        Index of the closing bracket, or None if the class is unterminated
    """
    j = start

    while j < len(text):
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == "]":
            return j
        j += 1

    return None


def excluded_members(body: str) -> Set[int]:
    """
    Collect the code points named by the body of a negated class.

    Handles backslash escapes (``\\r \\n \\t \\\\ \\]``, the shorthand classes
    ``\\d \\s \\w``, and ``\\c`` for any other c) and ``a-z`` ranges.

    Example:
        ```python
        excluded_members("a-c\\n")  # {97, 98, 99, 10}
        ```
    """
    excluded: Set[int] = set()
    i = 0
    n = len(body)

    while i < n:
        c = body[i]
        if c == "\\" and i + 1 < n:
            nxt = body[i + 1]
            excluded.update(_CLASS_ESCAPES.get(nxt, (ord(nxt),)))
            i += 2
        elif i + 2 < n and body[i + 1] == "-":
            excluded.update(range(ord(c), ord(body[i + 2]) + 1))
            i += 3
        else:
            excluded.add(ord(c))
            i += 1

    return excluded


def build_positive_class(excluded: Set[int]) -> str:
    """Emit a class holding every printable ASCII character not in ``excluded``."""
    members = [class_member(code) for code in PRINTABLE_ASCII if code not in excluded]
    return "[" + "".join(members) + "]"


def class_member(code: int) -> str:
    """Spell one character for use inside a character class."""
    ch = chr(code)
    if ch in CLASS_SPECIALS:
        return "\\" + ch
    if code < 0x20 or code == 0x7F:
        return f"\\x{code:02x}"
    return ch
