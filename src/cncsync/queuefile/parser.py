# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/queuefile/parser.py

"""
Parse operator edits back out of a control file.

Only completion markers are read. Position numbers are ignored, so
renumbered or reordered lines still map to the right attachment: the job
header ("JOB <id> ...") opens a scope and each entry inside it names a
file. "---" or the next header closes the scope.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from cncsync.errors import ParseError

HEADER = re.compile(r"^\s*JOB\s+(?P<job_id>\d+)\b", re.IGNORECASE)
SEPARATOR = re.compile(r"^\s*---\s*$")
ENTRY = re.compile(
    r"^\s*\d+\.\s*(?P<name>[^|]+?)\s*\|(?P<fields>.*\|)?\s*"
    r"\[(?P<status>OK|NOK|Completed|Incomplete)\]\s*$",
    re.IGNORECASE,
)
ID_FIELD = re.compile(r"\bid:\s*(?P<id>\d+)\b", re.IGNORECASE)

COMPLETED_TOKENS = frozenset({"ok", "completed"})


@dataclass
class ParsedEntry:
    job_id: int
    file_name: str
    completed: bool
    line_no: int


@dataclass
class ParseResult:
    entries: List[ParsedEntry] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)


def parse_entry(line: str, line_no: int, job_id: int) -> ParsedEntry:
    """Parse one line inside a job scope.

    Raises:
        ParseError: The line is not an entry, or its id disagrees with the scope
    """
    match = ENTRY.match(line)
    if not match:
        raise ParseError(line_no, line, "not a queue entry")

    ids = ID_FIELD.findall(match.group("fields") or "")
    if ids and int(ids[-1]) != job_id:
        raise ParseError(line_no, line, f"id {ids[-1]} does not match job {job_id}")

    file_name = match.group("name").strip().replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not file_name:
        raise ParseError(line_no, line, "empty file name")

    return ParsedEntry(
        job_id=job_id,
        file_name=file_name,
        completed=match.group("status").lower() in COMPLETED_TOKENS,
        line_no=line_no,
    )


def parse_queue_file(text: str) -> ParseResult:
    """Extract (job id, file name, completed) triples from control file text."""
    result = ParseResult()
    job_id: Optional[int] = None

    for line_no, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        header = HEADER.match(line)
        if header:
            job_id = int(header.group("job_id"))
            continue
        if SEPARATOR.match(line):
            job_id = None
            continue

        if job_id is None:
            if ENTRY.match(line):
                logger.debug(f"Line {line_no}: entry outside any job, ignored")
            else:
                logger.debug(f"Line {line_no}: unrecognized line outside any job, ignored")
            continue

        try:
            result.entries.append(parse_entry(line, line_no, job_id))
        except ParseError as e:
            logger.warning(f"Skipping malformed control file line: {e}")
            result.errors.append(e)

    return result
