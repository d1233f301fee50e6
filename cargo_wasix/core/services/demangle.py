"""
L1 Domain — Rust legacy symbol demangling (pure).

Turns ``_ZN4core3fmt5write17h0123456789abcdefE`` into ``core::fmt::write``.
Symbols in any other scheme (C names, v0 ``_R`` mangling) are returned
unchanged.
"""

from __future__ import annotations

import re

_HASH_RE = re.compile(r"^h[0-9a-f]{16}$")

_ESCAPES = {
    "SP": "@",
    "BP": "*",
    "RF": "&",
    "LT": "<",
    "GT": ">",
    "LP": "(",
    "RP": ")",
    "C": ",",
}


def _unescape(ident: str) -> str | None:
    """Decode ``$..$`` escapes and ``..`` separators; None if malformed."""
    if ident.startswith("_$"):
        ident = ident[1:]
    out = []
    i = 0
    while i < len(ident):
        ch = ident[i]
        if ch == "$":
            end = ident.find("$", i + 1)
            if end < 0:
                return None
            code = ident[i + 1:end]
            if code in _ESCAPES:
                out.append(_ESCAPES[code])
            elif code.startswith("u") and len(code) > 1:
                try:
                    out.append(chr(int(code[1:], 16)))
                except ValueError:
                    return None
            else:
                return None
            i = end + 1
        elif ident.startswith("..", i):
            out.append("::")
            i += 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def demangle(symbol: str) -> str:
    """Demangle one Rust legacy symbol, dropping the trailing hash."""
    if symbol.startswith("__ZN"):
        body = symbol[4:]
    elif symbol.startswith("_ZN"):
        body = symbol[3:]
    elif symbol.startswith("ZN"):
        body = symbol[2:]
    else:
        return symbol

    parts: list[str] = []
    i = 0
    while i < len(body) and body[i] != "E":
        start = i
        while i < len(body) and body[i].isdigit():
            i += 1
        if start == i:
            return symbol
        length = int(body[start:i])
        ident = body[i:i + length]
        if len(ident) != length:
            return symbol
        parts.append(ident)
        i += length
    if i >= len(body) or not parts:
        return symbol

    suffix = body[i + 1:]
    if suffix.startswith(".llvm."):
        suffix = ""

    if len(parts) > 1 and _HASH_RE.match(parts[-1]):
        parts = parts[:-1]

    decoded = []
    for ident in parts:
        text = _unescape(ident)
        if text is None:
            return symbol
        decoded.append(text)
    return "::".join(decoded) + suffix
