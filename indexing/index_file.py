"""
Persisted per-tile descriptor index.

Layout (little endian):

    header  "LCDX" | u16 version | 16s taxonomy | u16 hist_bins | u32 tile_id
    body    N fixed-size records in hypothesis order:
            u32 hypo | u8 category | f32 confidence [| f32 hist[hist_bins]]
    footer  "DONE" | u64 N

Records are appended chunk by chunk; chunk boundaries are not recorded, so the
file content does not depend on the buffer size used while writing. The file
is written under a ".partial" name and renamed on close, and a reader rejects
anything whose footer is missing or disagrees with the body length.
"""
from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

import numpy as np

from common.logging_setup import get_logger
from common.status import IndexFormatError
from descriptors.land import LandDescriptor


log = get_logger("landloc.index_file")

MAGIC = b"LCDX"
FOOTER_MAGIC = b"DONE"
VERSION = 1
_HEADER = struct.Struct("<4sH16sHI")
_FOOTER = struct.Struct("<4sQ")
HEADER_SIZE = _HEADER.size
FOOTER_SIZE = _FOOTER.size


def index_path(folder: str | Path, tile_id: int, kind: str = "land") -> Path:
    return Path(folder) / f"{kind}_index_tile_{int(tile_id)}.bin"


def record_dtype(hist_bins: int = 0) -> np.dtype:
    fields = [("hypo", "<u4"), ("category", "u1"), ("confidence", "<f4")]
    if hist_bins > 0:
        fields.append(("hist", "<f4", (hist_bins,)))
    return np.dtype(fields)


@dataclass(slots=True, frozen=True)
class IndexHeader:
    taxonomy: str
    hist_bins: int
    tile_id: int
    version: int = VERSION

    def pack(self) -> bytes:
        try:
            name = self.taxonomy.encode("ascii")
        except UnicodeEncodeError as e:
            raise ValueError(f"taxonomy name {self.taxonomy!r} is not ASCII") from e
        if len(name) > 16:
            raise ValueError("taxonomy name longer than 16 bytes")
        return _HEADER.pack(MAGIC, self.version, name, self.hist_bins, self.tile_id)

    @classmethod
    def unpack(cls, raw: bytes) -> "IndexHeader":
        if len(raw) < HEADER_SIZE:
            raise IndexFormatError("index file shorter than its header")
        magic, version, name, bins, tile_id = _HEADER.unpack(raw[:HEADER_SIZE])
        if magic != MAGIC:
            raise IndexFormatError(f"bad index magic {magic!r}")
        if version != VERSION:
            raise IndexFormatError(f"unsupported index version {version}")
        return cls(taxonomy=name.rstrip(b"\0").decode("ascii"), hist_bins=int(bins), tile_id=int(tile_id), version=version)

    @property
    def dtype(self) -> np.dtype:
        return record_dtype(self.hist_bins)


class DescriptorIndexWriter:
    """
    Append-only writer. Use as a context manager: a clean exit publishes the
    file, an exception removes the partial file.

        with DescriptorIndexWriter(path, IndexHeader("nlcd", 0, 7)) as w:
            w.append(chunk)
    """

    def __init__(self, path: str | Path, header: IndexHeader):
        self.path = Path(path)
        self.header = header
        self.dtype = header.dtype
        self.count = 0
        self.chunks = 0
        self._tmp = self.path.with_name(self.path.name + ".partial")
        packed = header.pack()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: Optional[BinaryIO] = open(self._tmp, "wb")
        try:
            self._fh.write(packed)
        except OSError:
            self.abort()
            raise

    def append(self, records: np.ndarray) -> None:
        if self._fh is None:
            raise RuntimeError("index writer already closed")
        if records.dtype != self.dtype:
            raise TypeError(f"record dtype {records.dtype} does not match index dtype {self.dtype}")
        n = int(records.shape[0])
        if n == 0:
            return
        if int(records["hypo"][0]) != self.count or (n > 1 and np.any(np.diff(records["hypo"].astype(np.int64)) != 1)):
            raise ValueError("records must continue the hypothesis order without gaps")
        self._fh.write(np.ascontiguousarray(records).tobytes())
        self._fh.flush()
        self.count += n
        self.chunks += 1

    def close(self) -> Path:
        if self._fh is None:
            return self.path
        self._fh.write(_FOOTER.pack(FOOTER_MAGIC, self.count))
        self._fh.flush()
        os.fsync(self._fh.fileno())
        self._fh.close()
        self._fh = None
        os.replace(self._tmp, self.path)
        log.debug(
            "Index published",
            extra={"extra": {"path": str(self.path), "records": self.count, "chunks": self.chunks}},
        )
        return self.path

    def abort(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
        if self._tmp.exists():
            self._tmp.unlink()

    def __enter__(self) -> "DescriptorIndexWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()


class DescriptorIndex:
    """
    Read-only view of an index file. Records are memory-mapped, so opening a
    multi-million entry index does not load it.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Descriptor index not found: {self.path}")
        size = self.path.stat().st_size
        with open(self.path, "rb") as f:
            self.header = IndexHeader.unpack(f.read(HEADER_SIZE))
            if size < HEADER_SIZE + FOOTER_SIZE:
                raise IndexFormatError(f"{self.path}: truncated (no footer)")
            f.seek(size - FOOTER_SIZE)
            magic, count = _FOOTER.unpack(f.read(FOOTER_SIZE))
        if magic != FOOTER_MAGIC:
            raise IndexFormatError(f"{self.path}: truncated (bad footer)")
        self.dtype = self.header.dtype
        body = size - HEADER_SIZE - FOOTER_SIZE
        if body != int(count) * self.dtype.itemsize:
            raise IndexFormatError(
                f"{self.path}: footer says {count} records but body holds {body / self.dtype.itemsize:.2f}"
            )
        self.count = int(count)
        if self.count:
            self._records = np.memmap(self.path, dtype=self.dtype, mode="r", offset=HEADER_SIZE, shape=(self.count,))
        else:
            self._records = np.zeros(0, dtype=self.dtype)

    def __len__(self) -> int:
        return self.count

    @property
    def tile_id(self) -> int:
        return self.header.tile_id

    @property
    def taxonomy(self) -> str:
        return self.header.taxonomy

    @property
    def records(self) -> np.ndarray:
        return self._records

    def descriptor(self, i: int) -> LandDescriptor:
        """Entry i as a descriptor value."""
        if not 0 <= i < self.count:
            raise IndexError(f"entry {i} out of range for {self.count} records")
        rec = self._records[i]
        hist = tuple(float(v) for v in rec["hist"]) if self.header.hist_bins else None
        return LandDescriptor(
            category=int(rec["category"]),
            taxonomy=self.taxonomy,
            confidence=float(rec["confidence"]),
            histogram=hist,
        )

    def chunks(self, chunk_size: int) -> Iterator[np.ndarray]:
        """Consecutive record slices of at most chunk_size; each is checked for order."""
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        for start in range(0, self.count, chunk_size):
            chunk = np.array(self._records[start : start + chunk_size])
            expected = np.arange(start, start + chunk.shape[0], dtype=np.int64)
            if not np.array_equal(chunk["hypo"].astype(np.int64), expected):
                raise IndexFormatError(f"{self.path}: records out of hypothesis order near entry {start}")
            yield chunk

    def close(self) -> None:
        # dropping the last reference unmaps the file
        self._records = np.zeros(0, dtype=self.dtype)

    def __enter__(self) -> "DescriptorIndex":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
