"""Parse the human readable intervals printed by passenger-status."""

import re

# Nanoseconds per unit.
UNITS = {
    "ns": 1,
    "us": 10**3,
    "µs": 10**3,  # micro sign
    "μs": 10**3,  # greek mu
    "ms": 10**6,
    "s": 10**9,
    "m": 60 * 10**9,
    "h": 3600 * 10**9,
    "d": 86400 * 10**9,
}

# Longest units first so "ms" is never read as "m" followed by "s".
_TOKEN = re.compile(
    r"(\d+(?:\.\d*)?|\.\d+)(%s)"
    % "|".join(sorted(map(re.escape, UNITS), key=len, reverse=True))
)
_WHITESPACE = re.compile(r"\s+")


class IntervalError(ValueError):
    pass


def parse_interval(val):
    """Return the number of seconds in an interval such as ``"1h 20m 5s"``."""
    text = _WHITESPACE.sub("", val or "")
    if text == "0":
        return 0.0
    if not text:
        raise IntervalError("invalid interval %r" % val)

    nanoseconds = 0.0
    pos = 0
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None:
            raise IntervalError("invalid interval %r" % val)
        number, unit = match.groups()
        nanoseconds += float(number) * UNITS[unit]
        pos = match.end()
    return nanoseconds / 1e9
