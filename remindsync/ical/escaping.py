"""
Text escaping for calendar property values (SUMMARY, DESCRIPTION).

Both directions work in a single left-to-right scan so that a backslash
produced by one substitution is never re-read by another.
"""

import re

_LINE_ENDINGS = re.compile(r"\r\n?")

_ESCAPE_PATTERN = re.compile(r"[\\;,\n]")
_ESCAPES = {
    "\\": "\\\\",
    ";": "\\;",
    ",": "\\,",
    "\n": "\\n",
}

_UNESCAPE_PATTERN = re.compile(r"\\([\\;,nN])")
_UNESCAPES = {
    "\\": "\\",
    ";": ";",
    ",": ",",
    "n": "\n",
    # RFC 5545 allows an uppercase N for newline too
    "N": "\n",
}


def escape(value: str) -> str:
    """
    Escape backslash, semicolon, comma and newline.

    CR and CRLF become a newline first; a raw CR would otherwise end the
    content line when the feed is read back.
    """
    value = _LINE_ENDINGS.sub("\n", value)
    return _ESCAPE_PATTERN.sub(lambda m: _ESCAPES[m.group(0)], value)


def unescape(value: str) -> str:
    """
    Undo escape().

    Unknown escape sequences and a trailing lone backslash are kept verbatim.
    """
    return _UNESCAPE_PATTERN.sub(lambda m: _UNESCAPES[m.group(1)], value)
