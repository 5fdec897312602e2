"""Durations, condition-change events, start times and OS identification."""

from __future__ import annotations

import platform
import re
import sys
import time
from datetime import datetime, timedelta
from fractions import Fraction
from typing import Optional, Union

import psutil

from nodestatsmon.types import ConditionStatus, Event, Severity

OS_RELEASE_PATH = "/etc/os-release"

_UNITS_NS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}

_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_MAX_NS = 2**63 - 1

_DEBIAN_LIKE = frozenset(
    {"debian", "ubuntu", "centos", "rocky", "rhel", "ol", "amzn", "sles", "mariner", "azurelinux"}
)


def _parse_duration_ns(text: str) -> int:
    original = text
    negative = False
    if text[:1] in ("-", "+"):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        raise ValueError(f"invalid duration {original!r}")
    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        int_part, frac_part, unit = match.group(1), match.group(2), match.group(3)
        if not int_part and not frac_part:
            raise ValueError(f"invalid duration {original!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {original!r}")
        if unit not in _UNITS_NS:
            raise ValueError(f"unknown unit {unit!r} in duration {original!r}")
        scale = _UNITS_NS[unit]
        value = Fraction(int(int_part or "0")) * scale
        if frac_part:
            value += int(Fraction(int(frac_part), 10 ** len(frac_part)) * scale)
        total += value
        if total > _MAX_NS:
            raise ValueError(f"invalid duration {original!r}")
        pos = match.end()
    ns = int(total)
    return -ns if negative else ns


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "1h30m", "5s" or "1.5ms" (sub-microsecond parts are dropped)."""
    ns = _parse_duration_ns(text)
    micros = abs(ns) // 1000
    return timedelta(microseconds=-micros if ns < 0 else micros)


def _fraction(value: int, precision: int) -> tuple[str, int]:
    scale = 10**precision
    digits = value % scale
    frac = "" if digits == 0 else "." + str(digits).zfill(precision).rstrip("0")
    return frac, value // scale


def format_duration(duration: timedelta) -> str:
    """Format a duration in the compact form "1h2m3.5s", "500ms", "0s"."""
    ns = (duration // timedelta(microseconds=1)) * 1000
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)
    if u < 1_000_000_000:
        if u < 1_000:
            return f"{sign}{u}ns"
        if u < 1_000_000:
            frac, whole = _fraction(u, 3)
            return f"{sign}{whole}{frac}\u00b5s"
        frac, whole = _fraction(u, 6)
        return f"{sign}{whole}{frac}ms"
    frac, seconds = _fraction(u, 9)
    out = f"{seconds % 60}{frac}s"
    minutes = seconds // 60
    if minutes:
        out = f"{minutes % 60}m{out}"
        hours = minutes // 60
        if hours:
            out = f"{hours}h{out}"
    return sign + out


_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def _quote(text: str) -> str:
    parts = []
    for ch in text:
        if ch in _ESCAPES:
            parts.append(_ESCAPES[ch])
        elif ch.isprintable():
            parts.append(ch)
        elif ord(ch) < 0x80:
            parts.append(f"\\x{ord(ch):02x}")
        elif ord(ch) <= 0xFFFF:
            parts.append(f"\\u{ord(ch):04x}")
        else:
            parts.append(f"\\U{ord(ch):08x}")
    return '"' + "".join(parts) + '"'


def generate_condition_change_event(
    condition_type: str,
    status: Union[ConditionStatus, str],
    reason: str,
    message: str,
    timestamp: datetime,
) -> Event:
    """Build the event announcing that a node condition changed."""
    status = ConditionStatus(status)
    severity = Severity.WARN if status is ConditionStatus.TRUE else Severity.INFO
    return Event(
        severity=severity,
        timestamp=timestamp,
        reason=reason,
        message=(
            f"Node condition {condition_type} is now: {status.value}, "
            f"reason: {reason}, message: {_quote(message)}"
        ),
    )


def get_start_time(now: datetime, uptime: timedelta, lookback: str, delay: str) -> datetime:
    """Compute when log watching should start given uptime, delay and lookback."""
    start = now - uptime
    if delay:
        try:
            start += parse_duration(delay)
        except ValueError as exc:
            raise ValueError(f"failed to parse delay duration {delay!r}: {exc}") from exc
    lookback_start = now
    if lookback:
        try:
            lookback_start = now - parse_duration(lookback)
        except ValueError as exc:
            raise ValueError(f"failed to parse lookback duration {lookback!r}: {exc}") from exc
    return max(start, lookback_start)


def get_uptime_duration() -> timedelta:
    """Time elapsed since the last boot, in whole seconds."""
    return timedelta(seconds=int(time.time() - psutil.boot_time()))


def read_os_release(path: str) -> dict[str, str]:
    """Read an os-release style file into a key/value mapping."""
    result: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            result[key.strip()] = value
    return result


def get_os_version(os_release_path: Optional[str] = None) -> str:
    """Describe the running OS, e.g. "cos 77-12293.0.0" or "ubuntu 16.04.6 LTS (Xenial Xerus)"."""
    if os_release_path is None:
        if sys.platform == "darwin":
            return f"darwin {platform.mac_ver()[0]}"
        os_release_path = OS_RELEASE_PATH
    info = read_os_release(os_release_path)
    os_id = info.get("ID", "")
    if os_id == "cos":
        version = info.get("VERSION", "")
        build_id = info.get("BUILD_ID", "")
        return f"{os_id} {version}-{build_id}"
    if os_id in _DEBIAN_LIKE:
        version = info.get("VERSION", "")
        return f"{os_id} {version}"
    raise ValueError(f"Unsupported ID in /etc/os-release: {_quote(os_id)}")