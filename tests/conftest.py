from __future__ import annotations

import struct
from io import BytesIO

import pytest

from dissect.hivetree.hive import hashname

KEY_NODE_FORMAT = "<2sHQIIiIIIiIII20sHH"
HEADER_FORMAT = "<4sIIQIIIIIII"
HBIN_FORMAT = "<4sIIIIQI"
HBIN_HEADER_SIZE = 0x20


def key_node(
    name: bytes,
    key_type: int = 0x20,
    num_subkeys: int = 0,
    subkeys: int = 0xFFFFFFFF,
    parent: int = 0,
    timestamp: int = 0,
) -> bytes:
    return (
        struct.pack(
            KEY_NODE_FORMAT,
            b"nk",
            key_type,
            timestamp,
            0,
            parent,
            num_subkeys,
            0,
            subkeys,
            0xFFFFFFFF,
            0,
            0xFFFFFFFF,
            0x78,
            0xFFFFFFFF,
            b"",
            len(name),
            0,
        )
        + name
    )


def hive_header(last_block: int, sequence: tuple[int, int] = (1, 1), timestamp: int = 0) -> bytes:
    header = struct.pack(HEADER_FORMAT, b"regf", *sequence, timestamp, 1, 5, 0, 1, HBIN_HEADER_SIZE, last_block, 1)
    header += b"\x00" * 0x1CC

    checksum = 0
    for word in struct.unpack("<127I", header):
        checksum ^= word

    return header + struct.pack("<I", checksum)


def pad(data: bytearray, allocated: bool = False) -> None:
    """Fill ``data`` up to the next block boundary with a single cell."""
    if free := -len(data) % 0x1000:
        data += struct.pack("<i", -free if allocated else free) + b"\x00" * (free - 4)


class HiveBuilder:
    """Assemble a hive from cells added in order, split over one or more hbins."""

    def __init__(self):
        self.cells = bytearray()
        self.blocks = []
        self.names = {}
        self.sequence = (1, 1)
        self.timestamp = 0
        self.last_block = None

        self.new_block()

    def new_block(self) -> None:
        """Fill the current hbin with an allocated cell and start a new one."""
        pad(self.cells, allocated=True)
        self.blocks.append(len(self.cells))
        self.cells += b"\x00" * HBIN_HEADER_SIZE

    def add(self, payload: bytes) -> int:
        offset = len(self.cells)
        size = (len(payload) + 4 + 7) & ~7
        self.cells += struct.pack("<i", -size) + payload.ljust(size - 4, b"\x00")
        return offset

    def key(self, name: str, encoding: str = "latin1", **kwargs) -> int:
        offset = self.add(key_node(name.encode(encoding), **kwargs))
        self.names[offset] = name
        return offset

    def root(self, name: str = "ROOT", **kwargs) -> int:
        return self.key(name, key_type=0x2C, **kwargs)

    def hash_list(self, offsets: list[int], signature: bytes = b"lf", count: int | None = None) -> int:
        entries = b""
        for offset in offsets:
            name = self.names.get(offset, "")
            if signature == b"lh":
                entries += struct.pack("<II", offset, hashname(name))
            else:
                entries += struct.pack("<I4s", offset, name[:4].encode())

        return self.add(struct.pack("<2sh", signature, len(offsets) if count is None else count) + entries)

    def index_list(self, offsets: list[int], signature: bytes = b"li", count: int | None = None) -> int:
        entries = b"".join(struct.pack("<I", offset) for offset in offsets)
        return self.add(struct.pack("<2sh", signature, len(offsets) if count is None else count) + entries)

    def build(self) -> bytes:
        data = bytearray(self.cells)
        pad(data)

        for start, end in zip(self.blocks, [*self.blocks[1:], len(data)]):
            data[start : start + HBIN_HEADER_SIZE] = struct.pack(
                HBIN_FORMAT, b"hbin", start, end - start, 0, 0, self.timestamp, end - start
            )

        last_block = len(data) if self.last_block is None else self.last_block
        header = hive_header(last_block, self.sequence, self.timestamp)

        return header.ljust(0x1000, b"\x00") + bytes(data)

    def open(self) -> BytesIO:
        return BytesIO(self.build())


@pytest.fixture
def hive_builder() -> HiveBuilder:
    return HiveBuilder()
