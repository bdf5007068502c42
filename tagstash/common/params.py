from __future__ import annotations

import re
from collections.abc import Iterable

from tagstash.common.exceptions import InvalidIdentifierError

_INT_ID_RE = re.compile(r"[+-]?[0-9]+")

# Range of the Integer primary key column.
MIN_ID = -(2**31)
MAX_ID = 2**31 - 1


def parse_id(value: str | int) -> int:
    if isinstance(value, bool):
        raise InvalidIdentifierError(value)
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and _INT_ID_RE.fullmatch(value):
        parsed = int(value)
    else:
        raise InvalidIdentifierError(value)
    if not MIN_ID <= parsed <= MAX_ID:
        raise InvalidIdentifierError(value)
    return parsed


def parse_id_list(values: Iterable[str | int]) -> list[int]:
    """Parse every identifier up front; the first malformed one aborts the whole list."""
    return [parse_id(value) for value in values]
