"""Readers for kernel command-line arguments and loaded kernel modules."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Iterable

_UINT64_MAX = 2**64 - 1
_DIGITS = re.compile(r"[0-9]+")


def _go_json(data: dict) -> str:
    text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
                         ("\u2028", "\\u2028"), ("\u2029", "\\u2029")):
        text = text.replace(raw, escaped)
    return text


@dataclass
class CmdlineArg:
    """One kernel command-line parameter; value is empty for bare flags."""

    key: str
    value: str = ""

    def __str__(self) -> str:
        return _go_json({"key": self.key, "value": self.value})


@dataclass
class Module:
    """One loaded kernel module and its taint flags."""

    module_name: str
    instances: int = 0
    proprietary: bool = False
    out_of_tree: bool = False
    unsigned: bool = False

    def __str__(self) -> str:
        return _go_json({
            "moduleName": self.module_name,
            "instances": self.instances,
            "proprietary": self.proprietary,
            "outOfTree": self.out_of_tree,
            "unsigned": self.unsigned,
        })


def read_file_into_lines(filename: str) -> list[str]:
    """Read a file and return its lines without line terminators."""
    with open(filename, encoding="utf-8", errors="replace", newline="") as handle:
        text = handle.read()
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def contains_module(key: str, values: Iterable[Module]) -> bool:
    """Whether any module in values is named key."""
    return any(module.module_name == key for module in values)


def _split_cmdline(line: str) -> list[str]:
    # Spaces inside double quotes do not separate parameters.
    fields: list[str] = []
    current: list[str] = []
    within_quotes = False
    for ch in line:
        if ch == '"':
            within_quotes = not within_quotes
            current.append(ch)
        elif ch == " " and not within_quotes:
            if current:
                fields.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        fields.append("".join(current))
    return fields


def cmdline_args(cmdline_file_path: str) -> list[CmdlineArg]:
    """Parse the kernel command line stored in a file such as /proc/cmdline."""
    lines = read_file_into_lines(cmdline_file_path)
    if not lines:
        raise ValueError("no lines are returned")
    result: list[CmdlineArg] = []
    for word in _split_cmdline(lines[0]):
        if word.startswith('"'):
            continue
        tokens = word.split("=")
        if len(tokens) < 2:
            result.append(CmdlineArg(key=tokens[0]))
        else:
            result.append(CmdlineArg(key=tokens[0], value=tokens[1].strip("\"'")))
    return result


def _parse_instances(text: str) -> int:
    if not _DIGITS.fullmatch(text):
        return 0
    value = int(text)
    return value if value <= _UINT64_MAX else 0


def modules(modules_file_path: str) -> list[Module]:
    """Parse the loaded kernel modules from a file such as /proc/modules.

    A line looks like:
    ``nf_nat 61440 2 xt_MASQUERADE,iptable_nat, Live 0x0000000000000000 (O)``
    where the optional last field carries taint flags: P proprietary,
    O out of tree, E unsigned.
    """
    result: list[Module] = []
    for lineno, line in enumerate(read_file_into_lines(modules_file_path), start=1):
        fields = line.split()
        if len(fields) < 3:
            raise ValueError(
                f"malformed line {lineno} in {modules_file_path}: {line!r}"
            )
        module = Module(module_name=fields[0], instances=_parse_instances(fields[2]))
        if len(fields) > 6:
            taint = fields[6]
            module.proprietary = "P" in taint
            module.out_of_tree = "O" in taint
            module.unsigned = "E" in taint
        result.append(module)
    return result