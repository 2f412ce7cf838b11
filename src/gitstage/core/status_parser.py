"""Decode ``git status --porcelain=v1`` output into change records.

Both the NUL-terminated (``-z``) form and the newline form are accepted;
the form is picked by whether the output contains a NUL byte at all. In the
``-z`` form paths are raw bytes and a rename/copy entry is followed by its
source path as a separate NUL-terminated field. In the newline form paths
with unusual bytes are C-quoted and renames read ``ORIG -> PATH``.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from gitstage.core.errors import DuplicatePath, MalformedRecord, Truncated
from gitstage.models.change import ChangeRecord, FileStatus

logger = logging.getLogger(__name__)

STATUS_CODES: Dict[int, FileStatus] = {
    ord(" "): FileStatus.UNMODIFIED,
    ord("A"): FileStatus.ADDED,
    ord("M"): FileStatus.MODIFIED,
    ord("T"): FileStatus.MODIFIED,
    ord("D"): FileStatus.DELETED,
    ord("R"): FileStatus.RENAMED,
    ord("C"): FileStatus.COPIED,
    ord("?"): FileStatus.UNTRACKED,
    ord("U"): FileStatus.CONFLICTED,
}

STATUS_CHARS: Dict[FileStatus, bytes] = {
    FileStatus.UNMODIFIED: b" ",
    FileStatus.ADDED: b"A",
    FileStatus.MODIFIED: b"M",
    FileStatus.DELETED: b"D",
    FileStatus.RENAMED: b"R",
    FileStatus.COPIED: b"C",
    FileStatus.UNTRACKED: b"?",
    FileStatus.CONFLICTED: b"U",
    FileStatus.UNKNOWN: b"X",
}

UNMERGED_PAIRS = {b"DD", b"AU", b"UD", b"UA", b"DU", b"AA", b"UU"}

RENAME_ARROW = b" -> "

_ESCAPES = {
    ord("a"): 0x07,
    ord("b"): 0x08,
    ord("t"): 0x09,
    ord("n"): 0x0A,
    ord("v"): 0x0B,
    ord("f"): 0x0C,
    ord("r"): 0x0D,
    ord('"'): ord('"'),
    ord("\\"): ord("\\"),
}
_REVERSE_ESCAPES = {value: key for key, value in _ESCAPES.items()}
_OCTAL = frozenset(b"01234567")


def decode_status_pair(code: bytes) -> Tuple[FileStatus, FileStatus]:
    """Map a two-byte ``XY`` code to (index, worktree) statuses."""
    if code in UNMERGED_PAIRS:
        return FileStatus.CONFLICTED, FileStatus.CONFLICTED
    return (
        STATUS_CODES.get(code[0], FileStatus.UNKNOWN),
        STATUS_CODES.get(code[1], FileStatus.UNKNOWN),
    )


def unquote_path(raw: bytes) -> bytes:
    """Undo git's C-style quoting; unquoted paths are returned unchanged."""
    if not raw.startswith(b'"'):
        return raw
    if len(raw) < 2 or not raw.endswith(b'"'):
        raise MalformedRecord(raw, "unterminated quoted path")

    body = raw[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        byte = body[i]
        if byte != ord("\\"):
            out.append(byte)
            i += 1
            continue
        if i + 1 >= len(body):
            raise MalformedRecord(raw, "dangling escape")
        nxt = body[i + 1]
        if nxt in _ESCAPES:
            out.append(_ESCAPES[nxt])
            i += 2
        elif len(body[i + 1:i + 4]) == 3 and all(c in _OCTAL for c in body[i + 1:i + 4]):
            out.append(int(body[i + 1:i + 4], 8) & 0xFF)
            i += 4
        else:
            raise MalformedRecord(raw, f"unknown escape \\{chr(nxt)}")
    return bytes(out)


def quote_path(path: bytes) -> bytes:
    """Quote a path the way git does when ``core.quotepath`` is off."""
    needs_quoting = (
        path.startswith(b'"')
        or RENAME_ARROW in path
        or any(b < 0x20 or b in (0x22, 0x5C, 0x7F) for b in path)
    )
    if not needs_quoting:
        return path
    out = bytearray(b'"')
    for byte in path:
        if byte in _REVERSE_ESCAPES:
            out += b"\\" + bytes([_REVERSE_ESCAPES[byte]])
        elif byte < 0x20 or byte == 0x7F:
            out += b"\\%03o" % byte
        else:
            out.append(byte)
    out += b'"'
    return bytes(out)


def _split_entry(entry: bytes) -> Tuple[bytes, bytes]:
    if len(entry) < 4 or entry[2:3] != b" ":
        raise MalformedRecord(entry, "expected 'XY PATH'")
    return entry[:2], entry[3:]


def _split_rename(rest: bytes) -> Tuple[bytes, bytes]:
    """Split newline-form ``ORIG -> PATH`` honouring quoted halves."""
    if rest.startswith(b'"'):
        end = 1
        while end < len(rest):
            if rest[end] == ord("\\"):
                end += 2
                continue
            if rest[end] == ord('"'):
                break
            end += 1
        orig_raw, remainder = rest[:end + 1], rest[end + 1:]
        if not remainder.startswith(RENAME_ARROW):
            raise MalformedRecord(rest, "missing rename arrow")
        return orig_raw, remainder[len(RENAME_ARROW):]
    if RENAME_ARROW not in rest:
        raise MalformedRecord(rest, "missing rename arrow")
    orig_raw, _, path_raw = rest.partition(RENAME_ARROW)
    return orig_raw, path_raw


def _records_nul(output: bytes) -> Iterable[Tuple[bytes, bytes, Optional[bytes]]]:
    fields = output.split(b"\0")
    tail = fields.pop()
    if tail:
        raise Truncated(tail)

    index = 0
    while index < len(fields):
        entry = fields[index]
        index += 1
        code, path = _split_entry(entry)
        previous = None
        if b"R" in code or b"C" in code:
            if index >= len(fields):
                raise Truncated(entry)
            previous = fields[index]
            index += 1
            if not previous:
                raise MalformedRecord(entry, "empty rename source")
        yield code, path, previous


def _records_lines(output: bytes) -> Iterable[Tuple[bytes, bytes, Optional[bytes]]]:
    lines = output.split(b"\n")
    tail = lines.pop()
    if tail:
        raise Truncated(tail)

    for line in lines:
        if not line:
            continue
        code, rest = _split_entry(line)
        previous = None
        if b"R" in code or b"C" in code:
            orig_raw, path_raw = _split_rename(rest)
            previous = unquote_path(orig_raw)
            path = unquote_path(path_raw)
        else:
            path = unquote_path(rest)
        yield code, path, previous


def parse(output: bytes) -> List[ChangeRecord]:
    """Parse porcelain v1 status output into records sorted by path.

    Raises:
        Truncated: The stream ends in the middle of a record.
        DuplicatePath: The same path appears twice.
        MalformedRecord: A record does not have the ``XY PATH`` shape.
    """
    if not output:
        return []

    raw_records = _records_nul(output) if b"\0" in output else _records_lines(output)

    records: Dict[bytes, ChangeRecord] = {}
    # Materialize first so a truncated tail discards the whole batch.
    for code, path, previous in list(raw_records):
        if not path:
            raise MalformedRecord(code, "empty path")
        index_status, worktree_status = decode_status_pair(code)
        if index_status == FileStatus.UNMODIFIED and worktree_status == FileStatus.UNMODIFIED:
            logger.debug("Skipping unchanged status entry for %r", path)
            continue
        if path in records:
            raise DuplicatePath(path)
        records[path] = ChangeRecord(
            path=path,
            previous_path=previous,
            index_status=index_status,
            worktree_status=worktree_status,
        )

    return [records[path] for path in sorted(records)]


def encode_status_pair(record: ChangeRecord) -> bytes:
    if record.index_status == FileStatus.CONFLICTED and record.worktree_status == FileStatus.CONFLICTED:
        return b"UU"
    return STATUS_CHARS[record.index_status] + STATUS_CHARS[record.worktree_status]


def serialize(records: Iterable[ChangeRecord], nul_terminated: bool = True) -> bytes:
    """Write records back in porcelain v1 form; the inverse of ``parse``."""
    out = bytearray()
    for record in records:
        code = encode_status_pair(record)
        if nul_terminated:
            out += code + b" " + record.path + b"\0"
            if record.previous_path is not None:
                out += record.previous_path + b"\0"
        else:
            out += code + b" "
            if record.previous_path is not None:
                out += quote_path(record.previous_path) + RENAME_ARROW
            out += quote_path(record.path) + b"\n"
    return bytes(out)
