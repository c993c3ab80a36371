"""
Sequential CSV record source.

The first line is the header. Every following line becomes either a row
(list[str], same length as the header) or a RowError; malformed lines never
stop the iteration. Files are decoded with errors="surrogateescape", so a bad
byte only spoils the row it sits in.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from typing import Iterator, TextIO, Union


class SourceError(Exception):
    """The source cannot be opened or has no header."""


@dataclass(frozen=True)
class RowError:
    line: int
    reason: str


Record = Union[list[str], RowError]


def _undecodable(fields) -> bool:
    # surrogateescape turns each bad byte into a lone surrogate, which
    # strict utf-8 refuses to encode
    try:
        for f in fields:
            f.encode("utf-8")
    except UnicodeEncodeError:
        return True
    return False


class RecordSource:
    def __init__(self, fh: TextIO, name: str = "<stream>"):
        self.name = name
        self._fh = fh
        self._reader = csv.reader(fh)
        try:
            header = next(self._reader)
        except StopIteration:
            raise SourceError(f"{name}: empty file, no header row") from None
        except csv.Error as e:
            raise SourceError(f"{name}: cannot parse header: {e}") from e
        if not header or not any(h.strip() for h in header):
            raise SourceError(f"{name}: blank header row")
        if _undecodable(header):
            raise SourceError(f"{name}: header is not valid {self._encoding()} text")
        self.header: tuple[str, ...] = tuple(header)

    @classmethod
    def open(cls, path: str, encoding: str = "utf-8") -> "RecordSource":
        try:
            fh = open(path, "r", encoding=encoding, errors="surrogateescape", newline="")
        except (OSError, LookupError) as e:
            raise SourceError(f"cannot open {path}: {e}") from e
        try:
            return cls(fh, name=path)
        except BaseException:
            fh.close()
            raise

    def __iter__(self) -> Iterator[Record]:
        width = len(self.header)
        while True:
            try:
                row = next(self._reader)
            except StopIteration:
                return
            except csv.Error as e:
                yield RowError(self._reader.line_num, str(e))
                continue

            if not row:
                continue
            if len(row) != width:
                yield RowError(
                    self._reader.line_num,
                    f"expected {width} fields, got {len(row)}",
                )
                continue
            if _undecodable(row):
                yield RowError(
                    self._reader.line_num,
                    f"invalid byte sequence for encoding {self._encoding()}",
                )
                continue
            yield row

    def _encoding(self) -> str:
        return getattr(self._fh, "encoding", None) or "utf-8"

    def close(self) -> None:
        self._fh.close()

    def __enter__(self) -> "RecordSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
