# app/core/log_utils.py
"""Sanitisation of user-controlled values before they reach a log line.

Emails, passkey names, client IPs and anything echoed back from a WebAuthn
response are attacker controlled. They are passed through ``sanitize_for_log``
so they cannot forge extra log lines or drive a terminal.

This does NOT protect against format-string injection. Always log with
``logger.info("%s", value)``, never ``logger.info(value)``.
"""

import re
from typing import Any

# OSC, CSI and single-character ESC sequences; the Fe class leaves out [ and ]
_ANSI_RE = re.compile(
    r"""
    \x1B
    (?:
        \] [^\x07\x1B]* (?:\x07|\x1B\\)
      | \[ [0-?]* [ -/]* [@-~]
      | [@-Z\\^_]
    )
    """,
    re.VERBOSE,
)

# C0/C1 controls other than \t \n \r, which are escaped separately
_UNSAFE_CTRL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

# Bidi overrides and zero-width characters
_SPOOFING_RE = re.compile("[\u202a-\u202e\u2066-\u2069\u200e\u200f\u200b-\u200d\u2060\u00ad]")

_TRUNCATED_SUFFIX = "...[truncated]"


def sanitize_for_log(value: Any, max_length: int | None = 200) -> str:
    """Return ``value`` as a single, printable log-safe string.

    >>> sanitize_for_log("a\\nb")
    'a\\\\nb'
    >>> sanitize_for_log(None)
    '<None>'
    """
    if value is None:
        return "<None>"

    if isinstance(value, bytes | bytearray):
        text = value.hex()
    else:
        text = str(value)

    text = _ANSI_RE.sub("", text)
    text = (
        text.replace("\\", "\\\\")
        .replace("\r", "\\r")
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )
    text = _UNSAFE_CTRL_RE.sub("", text)
    text = _SPOOFING_RE.sub("", text)

    if max_length is not None and len(text) > max_length:
        keep = max(0, max_length - len(_TRUNCATED_SUFFIX))
        text = text[:keep] + _TRUNCATED_SUFFIX
    return text
