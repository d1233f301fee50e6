"""
Minimal WebAssembly binary reader/writer.

Only what post-processing needs: split a module into sections, look at
custom sections by name, and decode/encode the ``name`` section's
function-name map.  Everything else is carried through byte-for-byte.
"""

from __future__ import annotations

import io
from collections import namedtuple
from enum import IntEnum

import leb128

WASM_MAGIC = b"\0asm"
WASM_VERSION = b"\x01\0\0\0"
HEADER_SIZE = 8

NAME_SECTION = "name"


class WasmFormatError(ValueError):
    """The input is not a well-formed WebAssembly module."""


class SecType(IntEnum):
    CUSTOM = 0


class NameSubsection(IntEnum):
    MODULE = 0
    FUNCTION = 1
    LOCAL = 2


Section = namedtuple("Section", ["id", "payload"])


def toLEB(num: int) -> bytes:
    return bytes(leb128.u.encode(num))


def readULEB(iobuf) -> int:
    try:
        return leb128.u.decode_reader(iobuf)[0]
    except EOFError as e:
        raise WasmFormatError("unexpected end of input in LEB128 value") from e


class _Reader:
    def __init__(self, data: bytes):
        self.buf = io.BytesIO(data)
        self.size = len(data)

    @property
    def pos(self) -> int:
        return self.buf.tell()

    def at_end(self) -> bool:
        return self.pos >= self.size

    def readULEB(self) -> int:
        return readULEB(self.buf)

    def read(self, size: int) -> bytes:
        data = self.buf.read(size)
        if len(data) != size:
            raise WasmFormatError(f"unexpected end of input: wanted {size} bytes, got {len(data)}")
        return data

    def readByte(self) -> int:
        return self.read(1)[0]

    def readString(self) -> str:
        size = self.readULEB()
        try:
            return self.read(size).decode("utf-8")
        except UnicodeDecodeError as e:
            raise WasmFormatError(f"invalid UTF-8 name: {e}") from e


def _encode_string(text: str) -> bytes:
    raw = text.encode("utf-8")
    return toLEB(len(raw)) + raw


# ── Sections ────────────────────────────────────────────────────


def parse_module(data: bytes) -> list[Section]:
    """Split a module into its sections, in order."""
    if data[:4] != WASM_MAGIC:
        raise WasmFormatError("missing \\0asm magic number")
    if data[4:8] != WASM_VERSION:
        raise WasmFormatError(f"unsupported wasm version {data[4:8]!r}")
    reader = _Reader(data)
    reader.read(HEADER_SIZE)
    sections = []
    while not reader.at_end():
        sec_id = reader.readByte()
        size = reader.readULEB()
        sections.append(Section(sec_id, reader.read(size)))
    return sections


def encode_module(sections: list[Section]) -> bytes:
    out = bytearray(WASM_MAGIC + WASM_VERSION)
    for section in sections:
        out.append(section.id)
        out += toLEB(len(section.payload))
        out += section.payload
    return bytes(out)


def custom_section_name(section: Section) -> str | None:
    """Name of a custom section, or None for standard sections."""
    if section.id != SecType.CUSTOM:
        return None
    return _Reader(section.payload).readString()


def custom_section_body(section: Section) -> bytes:
    reader = _Reader(section.payload)
    reader.readString()
    return section.payload[reader.pos:]


def make_custom_section(name: str, body: bytes) -> Section:
    return Section(SecType.CUSTOM, _encode_string(name) + body)


# ── Name section ────────────────────────────────────────────────


def parse_name_section(body: bytes) -> list[tuple[int, bytes]]:
    """Subsections of a ``name`` section as ``(id, payload)`` pairs."""
    reader = _Reader(body)
    subsections = []
    while not reader.at_end():
        sub_id = reader.readByte()
        size = reader.readULEB()
        subsections.append((sub_id, reader.read(size)))
    return subsections


def encode_name_section(subsections: list[tuple[int, bytes]]) -> bytes:
    out = bytearray()
    for sub_id, payload in subsections:
        out.append(sub_id)
        out += toLEB(len(payload))
        out += payload
    return bytes(out)


def decode_name_map(payload: bytes) -> list[tuple[int, str]]:
    """Decode a ``vec((index, name))`` name map."""
    reader = _Reader(payload)
    count = reader.readULEB()
    return [(reader.readULEB(), reader.readString()) for _ in range(count)]


def encode_name_map(entries: list[tuple[int, str]]) -> bytes:
    out = bytearray(toLEB(len(entries)))
    for index, name in entries:
        out += toLEB(index)
        out += _encode_string(name)
    return bytes(out)
