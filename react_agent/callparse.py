"""Parsing of ``name(arg, ...)`` call expressions emitted inside ``<action>`` tags."""

import re

from .errors import ParseError

_CALL_RE = re.compile(r"(\w+)\((.*)\)", re.DOTALL)

QUOTES = ('"', "'")

# Applied in this order, each exactly once.
_ESCAPES = (
    ('\\"', '"'),
    ("\\'", "'"),
    ("\\n", "\n"),
    ("\\t", "\t"),
    ("\\r", "\r"),
    ("\\\\", "\\"),
)


def parse_action(action: str) -> tuple[str, list[str]]:
    """Split a call expression into (tool name, decoded arguments).

    Raises:
        ParseError: If no ``name(...)`` shape can be found.
    """
    match = _CALL_RE.search(action.strip())
    if match is None:
        raise ParseError(f"invalid function call syntax: {action!r}", action)
    name = match.group(1)
    return name, split_arguments(match.group(2).strip())


def split_arguments(args_str: str) -> list[str]:
    """Split an argument list on top-level commas and decode each argument.

    Commas inside quoted strings or nested parentheses do not split. A quote
    closes its string unless the character right before it is a backslash,
    so ``"a\\\\"`` does not close on the final quote.
    """
    args: list[str] = []
    current: list[str] = []
    in_string = False
    string_char = ""
    depth = 0

    for i, char in enumerate(args_str):
        if in_string:
            current.append(char)
            if char == string_char and args_str[i - 1] != "\\":
                in_string = False
                string_char = ""
            continue

        if char in QUOTES:
            in_string = True
            string_char = char
            current.append(char)
        elif char == "(":
            depth += 1
            current.append(char)
        elif char == ")":
            depth -= 1
            current.append(char)
        elif char == "," and depth == 0:
            args.append(decode_argument("".join(current)))
            current = []
        else:
            current.append(char)

    tail = "".join(current).strip()
    if tail:
        args.append(decode_argument(tail))
    return args


def decode_argument(arg: str) -> str:
    """Strip wrapping quotes and unescape; unquoted arguments pass through."""
    arg = arg.strip()
    quoted = any(arg.startswith(q) and arg.endswith(q) for q in QUOTES)
    if not quoted:
        return arg
    if len(arg) < 2:
        return ""
    inner = arg[1:-1]
    for escaped, plain in _ESCAPES:
        inner = inner.replace(escaped, plain)
    return inner
