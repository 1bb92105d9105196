"""Built-in template helpers.

Every helper takes ``(args, options, context)``: the positional and keyword
arguments from the template call plus the render context, and returns the
value to insert. Helpers signal failure with :class:`RenderError`.

    {{ now(offset='3 days', format='%Y-%m-%d') }}
    {{ randomValue(type='ALPHANUMERIC', length=12) }}
    {{ systemValue(key='BRAMBLE_REGION') }}
"""

from __future__ import annotations

import os
import random
import re
import string
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bramble.errors import RenderError

OFFSET_PATTERN = re.compile(r"^\s*([+-]?\d+)\s+(seconds?|minutes?|hours?|days?|weeks?)\s*$")

RANDOM_ALPHABETS: dict[str, str] = {
    "ALPHANUMERIC": string.ascii_letters + string.digits,
    "ALPHABETIC": string.ascii_letters,
    "NUMERIC": string.digits,
    "HEXADECIMAL": "0123456789abcdef",
    "ALPHANUMERIC_AND_SYMBOLS": string.ascii_letters + string.digits + string.punctuation,
}


class SystemKeyAuthoriser:
    """Decides which environment keys templates may read.

    Patterns are case-insensitive regular expressions matched against the
    whole key. ``None`` leaves access unrestricted.
    """

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        self._patterns = (
            None if patterns is None else [re.compile(p, re.IGNORECASE) for p in patterns]
        )

    @property
    def restricted(self) -> bool:
        return self._patterns is not None

    def is_permitted(self, key: str) -> bool:
        if self._patterns is None:
            return True
        return any(pattern.fullmatch(key) for pattern in self._patterns)


def _option(args: tuple[Any, ...], options: Mapping[str, Any], name: str, position: int) -> Any:
    if name in options:
        return options[name]
    if len(args) > position:
        return args[position]
    return None


def make_system_value_helper(authoriser: SystemKeyAuthoriser):
    """Build the ``systemValue`` helper bound to an allow-list."""

    def system_value(args: tuple[Any, ...], options: Mapping[str, Any], context: Any) -> Any:
        key = _option(args, options, "key", 0)
        if not key:
            raise RenderError("systemValue requires a key")
        value_type = str(options.get("type", "ENVIRONMENT")).upper()
        if value_type != "ENVIRONMENT":
            raise RenderError(f"systemValue type '{value_type}' is not supported")
        if not authoriser.is_permitted(key):
            raise RenderError(f"Access to {key} is denied")
        return os.environ.get(key, options.get("default", ""))

    return system_value


def parse_offset(offset: str) -> timedelta:
    """Parse offsets such as '3 days' or '-90 minutes'."""
    match = OFFSET_PATTERN.match(offset)
    if match is None:
        raise RenderError(f"Invalid date offset '{offset}'")
    amount = int(match.group(1))
    unit = match.group(2).rstrip("s") + "s"
    return timedelta(**{unit: amount})


def now_helper(args: tuple[Any, ...], options: Mapping[str, Any], context: Any) -> str:
    """Current time, optionally shifted and formatted.

    ``format`` accepts strftime patterns plus 'epoch' (milliseconds) and
    'unix' (seconds); default is ISO 8601 in UTC.
    """
    timezone = options.get("timezone")
    try:
        tz = ZoneInfo(timezone) if timezone else UTC
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RenderError(f"Unknown timezone '{timezone}'") from exc

    moment = datetime.now(tz)
    offset = _option(args, options, "offset", 0)
    if offset:
        moment += parse_offset(str(offset))

    fmt = options.get("format")
    if fmt is None:
        return moment.isoformat()
    if fmt == "epoch":
        return str(int(moment.timestamp() * 1000))
    if fmt == "unix":
        return str(int(moment.timestamp()))
    return moment.strftime(fmt)


def random_value_helper(args: tuple[Any, ...], options: Mapping[str, Any], context: Any) -> str:
    value_type = str(_option(args, options, "type", 0) or "UUID").upper()
    if value_type == "UUID":
        return str(uuid.uuid4())

    alphabet = RANDOM_ALPHABETS.get(value_type)
    if alphabet is None:
        raise RenderError(f"Unknown random value type '{value_type}'")
    length = int(options.get("length", 36))
    value = "".join(random.choice(alphabet) for _ in range(length))
    return value.upper() if options.get("uppercase") else value


def default_helpers(authoriser: SystemKeyAuthoriser) -> dict[str, Any]:
    return {
        "systemValue": make_system_value_helper(authoriser),
        "now": now_helper,
        "randomValue": random_value_helper,
    }
