"""Tool-argument lookup helpers tolerant of snake_case and camelCase keys."""

from __future__ import annotations

import math
from collections.abc import Mapping


def arg_value(args: Mapping[str, object], name: str) -> object | None:
    """Look up ``name`` (snake_case) accepting its camelCase spelling too."""

    if name in args:
        return args[name]
    head, *rest = name.split("_")
    camel = head + "".join(part.capitalize() for part in rest)
    return args.get(camel)


def arg_number(args: Mapping[str, object], name: str) -> float | None:
    """Finite numeric value of ``name`` (numbers or numeric strings), else ``None``."""

    value = arg_value(args, name)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


__all__ = ["arg_number", "arg_value"]
