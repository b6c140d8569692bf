"""SQL statement boundaries for the editor.

Splits SQL source into statements with a small lexical scanner that knows
about quoted strings, quoted identifiers, line and (nested) block comments,
and PostgreSQL dollar-quoted bodies, so semicolons inside any of those never
end a statement. Unterminated constructs simply run to the end of the text:
the scanner never raises, since the text is usually half-typed.
"""

from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

import sqlparse

_WHITESPACE = " \t\n\r\f"


class ScanState(Enum):
    NORMAL = "normal"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    DOLLAR_QUOTE = "dollar_quote"


class _Lexeme(NamedTuple):
    """Scanner state plus its payload (comment depth or dollar delimiter)."""

    state: ScanState
    depth: int = 0
    delimiter: str = ""


_NORMAL = _Lexeme(ScanState.NORMAL)


class _Segment(NamedTuple):
    raw_end: int
    first_content: Optional[int]


class SqlStatement(NamedTuple):
    """A statement found in the source and the offsets it spans."""

    text: str
    start: int
    end: int


def scan(text: str) -> List[SqlStatement]:
    """Return every non-empty statement in the text, in order.

    Segments holding only whitespace or comments are dropped. The text of a
    statement starts at its first content character and excludes the
    terminating semicolon and trailing whitespace.
    """
    statements = []
    for segment in _scan_segments(text):
        if segment.first_content is None:
            continue
        end = _trim_right(text, segment.raw_end)
        if end <= segment.first_content:
            continue
        statement = text[segment.first_content:end].rstrip()
        if not statement:
            continue
        statements.append(SqlStatement(statement, segment.first_content, end))
    return statements


def boundary_offsets(text: str) -> List[int]:
    """Offsets of the semicolons that end statements."""
    return [s.raw_end for s in _scan_segments(text) if s.raw_end < len(text)]


def resolve_selection(selected: str) -> Optional[str]:
    """SQL to run for an explicit selection, or None if it is blank."""
    sql = selected.strip()
    return sql or None


def resolve_range(text: str, start: int, end: int) -> Optional[str]:
    """SQL between two offsets of the text, clamped to the text bounds."""
    start = max(0, min(start, len(text)))
    end = max(start, min(end, len(text)))
    return resolve_selection(text[start:end])


def resolve_whole_document(text: str) -> Optional[str]:
    """The whole document, trimmed, or None when there is nothing to run."""
    sql = text.strip()
    return sql or None


def resolve_at_cursor(text: str, offset: int) -> Optional[str]:
    """The statement around the cursor offset.

    A cursor right after a semicolon belongs to the following statement; a
    cursor on the semicolon belongs to the statement it terminates. When the
    following statement is empty (trailing semicolon, blank tail) the
    preceding statement is used instead.
    """
    if not text.strip():
        return None

    offset = max(0, min(offset, len(text)))
    separators = boundary_offsets(text)
    start = _segment_start(offset, separators)
    end = _segment_end(offset, separators, len(text))
    sql = text[start:end].strip()
    if sql:
        return sql

    if start > 0:
        # start - 1 is the separator closing the preceding statement
        previous_end = start - 1
        previous_start = _segment_start(previous_end, separators)
        sql = text[previous_start:previous_end].strip()
        if sql:
            return sql
    return None


def format_sql(sql: str) -> str:
    """Reindent SQL and upper-case its keywords."""
    return sqlparse.format(sql, reindent=True, keyword_case="upper")


def position_at(text: str, offset: int) -> Tuple[int, int]:
    """Zero-based (line, column) of an offset."""
    offset = max(0, min(offset, len(text)))
    line = text.count("\n", 0, offset)
    line_start = text.rfind("\n", 0, offset) + 1
    return line, offset - line_start


def _segment_start(offset: int, separators: List[int]) -> int:
    for separator in reversed(separators):
        if separator <= offset - 1:
            return separator + 1
    return 0


def _segment_end(offset: int, separators: List[int], length: int) -> int:
    for separator in separators:
        if separator >= offset:
            return separator
    return length


def _scan_segments(text: str) -> List[_Segment]:
    segments = []
    lexeme = _NORMAL
    first_content = None
    length = len(text)
    i = 0

    while i < length:
        char = text[i]
        nxt = text[i + 1] if i + 1 < length else ""
        state = lexeme.state

        if state is ScanState.SINGLE_QUOTE or state is ScanState.DOUBLE_QUOTE:
            quote = "'" if state is ScanState.SINGLE_QUOTE else '"'
            if char == quote and nxt == quote:
                i += 2
                continue
            if char == quote:
                lexeme = _NORMAL
            i += 1
            continue

        if state is ScanState.LINE_COMMENT:
            if char == "\n":
                lexeme = _NORMAL
            i += 1
            continue

        if state is ScanState.BLOCK_COMMENT:
            if char == "/" and nxt == "*":
                lexeme = _Lexeme(ScanState.BLOCK_COMMENT, depth=lexeme.depth + 1)
                i += 2
                continue
            if char == "*" and nxt == "/":
                if lexeme.depth <= 1:
                    lexeme = _NORMAL
                else:
                    lexeme = _Lexeme(ScanState.BLOCK_COMMENT, depth=lexeme.depth - 1)
                i += 2
                continue
            i += 1
            continue

        if state is ScanState.DOLLAR_QUOTE:
            if text.startswith(lexeme.delimiter, i):
                i += len(lexeme.delimiter)
                lexeme = _NORMAL
                continue
            i += 1
            continue

        if char == "-" and nxt == "-":
            lexeme = _Lexeme(ScanState.LINE_COMMENT)
            i += 2
            continue

        if char == "/" and nxt == "*":
            lexeme = _Lexeme(ScanState.BLOCK_COMMENT, depth=1)
            i += 2
            continue

        if char == ";":
            segments.append(_Segment(i, first_content))
            first_content = None
            i += 1
            continue

        if char == "'" or char == '"':
            if first_content is None:
                first_content = i
            lexeme = _Lexeme(ScanState.SINGLE_QUOTE if char == "'" else ScanState.DOUBLE_QUOTE)
            i += 1
            continue

        if char == "$":
            delimiter = _read_dollar_delimiter(text, i)
            if delimiter:
                if first_content is None:
                    first_content = i
                lexeme = _Lexeme(ScanState.DOLLAR_QUOTE, delimiter=delimiter)
                i += len(delimiter)
                continue

        if char not in _WHITESPACE and first_content is None:
            first_content = i
        i += 1

    segments.append(_Segment(length, first_content))
    return segments


def _read_dollar_delimiter(text: str, offset: int) -> Optional[str]:
    """Return ``$tag$`` starting at offset, or None if it is not one."""
    cursor = offset + 1
    while cursor < len(text) and text[cursor] != "$":
        if not _is_tag_char(text[cursor]):
            return None
        cursor += 1
    if cursor >= len(text):
        return None
    return text[offset:cursor + 1]


def _is_tag_char(char: str) -> bool:
    return char == "_" or "0" <= char <= "9" or "a" <= char <= "z" or "A" <= char <= "Z"


def _trim_right(text: str, index: int) -> int:
    end = index
    while end > 0 and text[end - 1] in _WHITESPACE:
        end -= 1
    return end
