"""Cookie-string parsing helpers shared by the dispatcher.

Two flavours exist because the inputs differ:

* :func:`parse_cookie_header` reads a browser ``Cookie`` header.  Pairs are
  separated by ``;`` and optional spaces; a pair whose ``=`` is first or
  last is ignored.
* :func:`cookie_to_dict` reads the looser ``"k=v;k2=v2"`` strings that
  clients embed in a ``cookie`` query/body field or send as the
  ``Authorization`` header.

Both URL-decode keys and values; :func:`urllib.parse.unquote` never raises on
malformed escapes, so a bad pair degrades to its literal text.
"""

from __future__ import annotations

import re
from urllib.parse import unquote

__all__ = ["parse_cookie_header", "cookie_to_dict", "strip_ipv4_mapped_prefix"]

_HEADER_SPLIT = re.compile(r";\s*")

_IPV4_MAPPED_PREFIX = "::ffff:"


def parse_cookie_header(header: str | None) -> dict[str, str]:
    """Parse a ``Cookie`` request header into a mapping.

    >>> parse_cookie_header("token=abc; userid=42")
    {'token': 'abc', 'userid': '42'}
    """
    cookies: dict[str, str] = {}
    for pair in _HEADER_SPLIT.split(header or ""):
        pair = pair.strip()
        crack = pair.find("=")
        if crack < 1 or crack == len(pair) - 1:
            continue
        cookies[unquote(pair[:crack]).strip()] = unquote(pair[crack + 1 :]).strip()
    return cookies


def cookie_to_dict(text: str | None) -> dict[str, str]:
    """Parse a ``"k=v;k2=v2"`` string into a mapping.

    Values may themselves contain ``=``; only the first one splits.

    >>> cookie_to_dict("token=a=b; userid=7")
    {'token': 'a=b', 'userid': '7'}
    """
    result: dict[str, str] = {}
    if not text:
        return result
    for item in text.split(";"):
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        result[key] = value.strip()
    return result


def strip_ipv4_mapped_prefix(ip: str) -> str:
    """Turn ``"::ffff:1.2.3.4"`` into ``"1.2.3.4"``; other values pass through."""
    if ip.startswith(_IPV4_MAPPED_PREFIX):
        return ip[len(_IPV4_MAPPED_PREFIX) :]
    return ip
