"""
TOON: a compact tabular text format for arrays of uniform records.

A table is written as a header line followed by one indented row per record::

    requirements[2]{identifier,name,priority}:
      FR-001,User login,must
      FR-002,"Search, filter and sort",should

The header repeats the exact row count and the field names once, which is
what makes the format cheaper in tokens than JSON for uniform records.
"""

import json
import math
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from reqgraph.utils.errors import ToonDecodeError
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)

HEADER_PATTERN = re.compile(r"^([\w.-]+)\[(\d+)\]\{([^}]*)\}:$")
_NAME_PATTERN = re.compile(r"^[\w.-]+$")
_FIELD_PATTERN = re.compile(r"^[^,{}\[\]\s\"]+$")
_INT_PATTERN = re.compile(r"-?(?:0|[1-9]\d*)")
_FLOAT_PATTERN = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_KEYWORDS = {"true": True, "false": False, "null": None}

ROW_INDENT = "  "

Record = dict[str, Any]


# =============================================================================
# Row lexer
# =============================================================================


class LexerState(Enum):
    NORMAL = auto()
    IN_QUOTES = auto()


@dataclass(frozen=True)
class Token:
    """One field of a row as written: raw text plus whether it was quoted."""

    text: str
    quoted: bool = False

    def to_value(self) -> Any:
        """Reconstruct the typed scalar. Quoted fields are always strings."""
        if self.quoted:
            return self.text
        return parse_scalar(self.text)


def parse_scalar(text: str) -> Any:
    """Type an unquoted field: number, boolean, null or string."""
    if text == "":
        return None
    if text in _KEYWORDS:
        return _KEYWORDS[text]
    if _INT_PATTERN.fullmatch(text):
        return int(text)
    if _FLOAT_PATTERN.fullmatch(text):
        return float(text)
    return text


class RowLexer:
    """
    Quote-aware comma splitter.

    In NORMAL state a comma ends the field and a quote at the start of a
    field switches to IN_QUOTES. In IN_QUOTES every character is literal,
    a doubled quote is one literal quote, and a single quote returns to
    NORMAL. Ending in IN_QUOTES means the row continues on the next line.
    """

    def split(self, row: str) -> tuple[list[Token], LexerState]:
        tokens: list[Token] = []
        buffer: list[str] = []
        quoted = False
        state = LexerState.NORMAL
        i = 0

        while i < len(row):
            char = row[i]
            if state is LexerState.IN_QUOTES:
                if char == '"':
                    if row[i + 1 : i + 2] == '"':
                        buffer.append('"')
                        i += 2
                        continue
                    state = LexerState.NORMAL
                else:
                    buffer.append(char)
            elif char == ",":
                tokens.append(self._finish(buffer, quoted))
                buffer, quoted = [], False
            elif char == '"' and not quoted and not "".join(buffer).strip():
                buffer, quoted = [], True
                state = LexerState.IN_QUOTES
            elif quoted and char.isspace():
                # whitespace between a closing quote and the comma
                pass
            else:
                buffer.append(char)
            i += 1

        tokens.append(self._finish(buffer, quoted))
        return tokens, state

    @staticmethod
    def _finish(buffer: list[str], quoted: bool) -> Token:
        text = "".join(buffer)
        return Token(text, True) if quoted else Token(text.strip())


# =============================================================================
# Codec
# =============================================================================


@dataclass
class _OpenTable:
    name: str
    fields: list[str]
    declared_rows: int
    line_number: int
    rows: list[Record]


class ToonCodec:
    """Encode and decode TOON documents (one or more named tables)."""

    def __init__(self) -> None:
        self._lexer = RowLexer()

    # ------------------------------------------------------------------ encode

    def encode(self, tables: Mapping[str, Sequence[Mapping[str, Any]]]) -> str:
        """
        Encode named tables into one TOON document.

        Args:
            tables: Table name -> list of flat records

        Returns:
            TOON text, tables separated by a blank line
        """
        return "\n\n".join(self.encode_table(name, rows) for name, rows in tables.items())

    def encode_table(self, name: str, records: Sequence[Mapping[str, Any]]) -> str:
        """Encode a single named table."""
        if not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid table name: {name!r}")

        fields = self._collect_fields(records)
        lines = [f"{name}[{len(records)}]{{{','.join(fields)}}}:"]
        for record in records:
            cells = [self.format_value(record.get(field)) for field in fields]
            lines.append(ROW_INDENT + ",".join(cells))
        return "\n".join(lines)

    @staticmethod
    def _collect_fields(records: Iterable[Mapping[str, Any]]) -> list[str]:
        fields: dict[str, None] = {}
        for record in records:
            for key in record:
                if not _FIELD_PATTERN.match(key):
                    raise ValueError(f"Invalid field name: {key!r}")
                fields.setdefault(key, None)
        return list(fields)

    @classmethod
    def format_value(cls, value: Any) -> str:
        """Render one field value."""
        if value is None:
            return ""
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            return repr(value) if math.isfinite(value) else cls.quote(repr(value))
        if isinstance(value, (list, tuple, dict)):
            return cls.quote(json.dumps(value, ensure_ascii=False, default=str))

        text = str(value)
        return cls.quote(text) if cls.needs_quotes(text) else text

    @staticmethod
    def needs_quotes(text: str) -> bool:
        """Whether a string must be quoted to survive decoding unchanged."""
        if text == "" or text != text.strip():
            return True
        if any(char in text for char in ',"\n\r'):
            return True
        return parse_scalar(text) is not text

    @staticmethod
    def quote(text: str) -> str:
        return '"' + text.replace('"', '""') + '"'

    # ------------------------------------------------------------------ decode

    def decode(self, text: str, lenient: bool = False) -> dict[str, list[Record]]:
        """
        Decode a TOON document.

        Args:
            text: TOON text with one or more tables
            lenient: Drop malformed rows instead of failing

        Returns:
            Table name -> list of records

        Raises:
            ToonDecodeError: On malformed input when not lenient
        """
        lines = text.split("\n")
        tables: dict[str, list[Record]] = {}
        current: Optional[_OpenTable] = None
        i = 0

        while i < len(lines):
            line = lines[i]
            line_number = i + 1
            indented = line[:1] in (" ", "\t")
            header = None
            if not indented or (lenient and current is None):
                header = HEADER_PATTERN.match(line.strip())

            if header:
                self._close_table(current, tables, lenient)
                name, count, field_spec = header.groups()
                fields = [f.strip() for f in field_spec.split(",") if f.strip()]
                current = _OpenTable(name, fields, int(count), line_number, [])
                i += 1
                continue

            if current is not None and indented:
                if line.strip() or self._expects_empty_row(current):
                    i = self._read_row(lines, i, current, lenient)
                else:
                    i += 1
                continue

            if not line.strip():
                i += 1
                continue

            if not lenient:
                raise ToonDecodeError(f"Unexpected line outside a table: {line!r}", line_number)
            logger.debug("Ignoring non-TOON line", extra={"line": line_number})
            i += 1

        self._close_table(current, tables, lenient)
        return tables

    def decode_table(self, text: str, name: str, lenient: bool = False) -> list[Record]:
        """Decode a document and return the rows of one table (empty if absent)."""
        return self.decode(text, lenient=lenient).get(name, [])

    @staticmethod
    def _expects_empty_row(table: _OpenTable) -> bool:
        """A blank indented line is a row only for a single-field record whose value is empty."""
        return len(table.fields) == 1 and len(table.rows) < table.declared_rows

    def _read_row(self, lines: list[str], start: int, table: _OpenTable, lenient: bool) -> int:
        """Parse the row starting at ``lines[start]``; return the next line index."""
        line = lines[start]
        row_text = line[len(ROW_INDENT):] if line.startswith(ROW_INDENT) else line.lstrip()
        tokens, state = self._lexer.split(row_text)

        end = start
        while state is LexerState.IN_QUOTES and end + 1 < len(lines):
            end += 1
            row_text += "\n" + lines[end]
            tokens, state = self._lexer.split(row_text)

        if state is LexerState.IN_QUOTES:
            if not lenient:
                raise ToonDecodeError("Unterminated quoted field", start + 1)
            logger.warning("Dropping row with unterminated quote", extra={"line": start + 1})
            return start + 1

        if len(tokens) != len(table.fields):
            if not lenient:
                raise ToonDecodeError(
                    f"Row has {len(tokens)} fields, header '{table.name}' declares {len(table.fields)}",
                    start + 1,
                )
            logger.warning(
                "Dropping row with field count mismatch",
                extra={
                    "table": table.name,
                    "line": start + 1,
                    "expected_fields": len(table.fields),
                    "actual_fields": len(tokens),
                },
            )
            return end + 1

        table.rows.append({field: token.to_value() for field, token in zip(table.fields, tokens)})
        return end + 1

    @staticmethod
    def _close_table(
        table: Optional[_OpenTable],
        tables: dict[str, list[Record]],
        lenient: bool,
    ) -> None:
        if table is None:
            return
        if len(table.rows) != table.declared_rows:
            if not lenient:
                raise ToonDecodeError(
                    f"Table '{table.name}' declares {table.declared_rows} rows, found {len(table.rows)}",
                    table.line_number,
                )
            logger.debug(
                "Row count differs from header",
                extra={"table": table.name, "declared": table.declared_rows, "found": len(table.rows)},
            )
        tables.setdefault(table.name, []).extend(table.rows)

    # --------------------------------------------------------------- analysis

    def token_savings(
        self,
        tables: Mapping[str, Sequence[Mapping[str, Any]]],
        count_tokens: Callable[[str], int],
    ) -> dict[str, Any]:
        """Compare the token cost of TOON against pretty-printed JSON."""
        json_tokens = count_tokens(json.dumps(tables, indent=2, ensure_ascii=False, default=str))
        toon_tokens = count_tokens(self.encode(tables))
        saved = json_tokens - toon_tokens
        return {
            "json_tokens": json_tokens,
            "toon_tokens": toon_tokens,
            "saved_tokens": saved,
            "savings_percent": round(saved / json_tokens * 100, 1) if json_tokens else 0.0,
        }
