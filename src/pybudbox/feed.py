"""Decoder for the controller's CSV status feed.

The controller serves ``getvar.csv``: a header line followed by one line
per variable.  Only three positional fields matter::

    name,<ignored>,<ignored>,typeTag,<ignored>,valueText[,...]

Fields may be wrapped in double quotes and quoted fields may contain
commas.  This is intentionally a tiny scanner and not an RFC 4180 parser:
quotes toggle a flag and are dropped, commas outside quotes end a field.
"""

from __future__ import annotations

import logging
import math

from pybudbox._constants import (
    FEED_DELIMITER,
    FEED_MIN_FIELDS,
    FEED_NAME_INDEX,
    FEED_QUOTE,
    FEED_TYPE_INDEX,
    FEED_VALUE_INDEX,
)
from pybudbox.exceptions import BudboxProtocolError
from pybudbox.models.variables import DeviceVariable, VariableKind

_logger = logging.getLogger(__name__)


def split_feed_line(line: str) -> list[str]:
    """Split one feed line into fields, honouring double quotes."""
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line.rstrip("\r\n"):
        if char == FEED_QUOTE:
            in_quotes = not in_quotes
        elif char == FEED_DELIMITER and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def _parse_value(kind: VariableKind, text: str, line: str) -> float | int:
    stripped = text.strip()
    if kind is VariableKind.REAL:
        try:
            value = float(stripped)
        except ValueError as exc:
            raise BudboxProtocolError(f"Invalid REAL value {stripped!r}", line=line) from exc
        if math.isnan(value):
            raise BudboxProtocolError("REAL value is NaN", line=line)
        return value
    try:
        return int(stripped)
    except ValueError:
        # Some firmware prints booleans as "1.0"/"0.0".
        try:
            as_float = float(stripped)
        except ValueError as exc:
            raise BudboxProtocolError(f"Invalid BOOL value {stripped!r}", line=line) from exc
        if not as_float.is_integer():
            raise BudboxProtocolError(f"Invalid BOOL value {stripped!r}", line=line) from None
        return int(as_float)


def parse_feed_line(line: str) -> DeviceVariable:
    """Decode a single data line.

    Raises
    ------
    BudboxProtocolError
        If the line is too short, has no name, carries a type tag that is
        neither REAL nor BOOL, or its value does not parse.
    """
    fields = split_feed_line(line)
    if len(fields) < FEED_MIN_FIELDS:
        raise BudboxProtocolError(f"Expected at least {FEED_MIN_FIELDS} fields, got {len(fields)}", line=line)

    name = fields[FEED_NAME_INDEX].strip()
    if not name:
        raise BudboxProtocolError("Missing variable name", line=line)

    type_tag = fields[FEED_TYPE_INDEX].strip()
    kind = VariableKind.from_type_tag(type_tag)
    if kind is None:
        raise BudboxProtocolError(f"Unsupported type tag {type_tag!r}", line=line)

    value = _parse_value(kind, fields[FEED_VALUE_INDEX], line)
    return DeviceVariable(name=name, kind=kind, value=value)


def parse_status_feed(raw_text: str) -> dict[str, DeviceVariable]:
    """Decode a full status feed into ``{name: DeviceVariable}``.

    The first line is a header and is skipped.  Lines that fail to decode
    are skipped individually; the result only ever contains valid lines.
    Names the caller does not know about are kept.
    """
    lines = raw_text.strip().splitlines()
    variables: dict[str, DeviceVariable] = {}
    skipped = 0
    for line in lines[1:]:
        if not line.strip():
            continue
        try:
            variable = parse_feed_line(line)
        except BudboxProtocolError as exc:
            skipped += 1
            _logger.debug("Skipping feed line %r: %s", exc.line, exc)
            continue
        variables[variable.name] = variable

    if skipped:
        _logger.debug("Parsed %d feed variables, skipped %d lines", len(variables), skipped)
    return variables


class StatusFeedParser:
    """Injectable wrapper around :func:`parse_status_feed`."""

    def parse(self, raw_text: str) -> dict[str, DeviceVariable]:
        return parse_status_feed(raw_text)
