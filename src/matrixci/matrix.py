# matrix.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from .errors import DefinitionError
from .model import COMBINATORIC_AXES, Environment
from .ui.console import Console, get_console

DEFAULT_MATRIX_FILES = (".matrixci.yml", ".travis.yml")

_SCALAR_TYPES = (str, int, float, bool)


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------

def find_matrix_file(checkout: str | Path, preferred: str | None = None) -> Path:
    """
    Locate the build matrix definition inside a checkout.

    Looks for `preferred` first (if given), then .matrixci.yml, then .travis.yml.
    """
    root = Path(checkout)
    names = [preferred] if preferred else []
    names.extend(n for n in DEFAULT_MATRIX_FILES if n != preferred)
    for name in names:
        p = root / name
        if p.is_file():
            return p
    raise DefinitionError(
        "No build matrix definition found",
        path=root,
        details={"looked_for": ", ".join(names)},
    )


def load_definition(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise DefinitionError(f"Cannot read matrix definition: {e}", path=p) from e
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in matrix definition: {e}", path=p) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DefinitionError(
            f"Matrix definition must be a mapping, got {type(raw).__name__}",
            path=p,
        )
    return raw


def _as_commands(value: Any, key: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise DefinitionError(f"'{key}' must be a string or a list of strings")


def build_script(definition: Mapping[str, Any]) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Returns (before_script, script) from a matrix definition."""
    return (
        _as_commands(definition.get("before_script"), "before_script"),
        _as_commands(definition.get("script"), "script"),
    )


# ---------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------

def _axis_values(key: str, value: Any) -> List[Any]:
    values = value if isinstance(value, list) else [value]
    for v in values:
        if not isinstance(v, _SCALAR_TYPES):
            raise DefinitionError(
                f"Axis '{key}' values must be scalars, got {type(v).__name__}",
                details={"value": repr(v)},
            )
    return values


def _traverse(
    current: Dict[str, Any],
    remaining: Sequence[str],
    out: List[Environment],
    level: int,
    console: Console,
) -> None:
    indent = "  " * level
    console.print_debug(f"{indent}traverse: {list(remaining)}")

    if not remaining:
        env = Environment.from_mapping({k: current[k] for k in COMBINATORIC_AXES if k in current})
        console.print_debug(f"{indent}  inferred environment: {env}")
        out.append(env)
        return

    key, rest = remaining[0], remaining[1:]
    if current.get(key) is None:
        # absent axis: no split, move on to the next one
        _traverse(current, rest, out, level, console)
        return

    for val in _axis_values(key, current[key]):
        console.print_debug(f"{indent}  {key} = {val!r}")
        _traverse({**current, key: val}, rest, out, level + 1, console)


def expand(
    definition: Mapping[str, Any],
    *,
    limit: Optional[int] = None,
    console: Console | None = None,
) -> List[Environment]:
    """
    Expand a build matrix definition into concrete environments.

    Every combinatoric axis present in `definition` is split into one branch
    per value (a scalar counts as a one-element list). The result is sorted by
    the canonical rendering so repeated runs give identical job numbering.

    Args:
        definition: parsed matrix definition (non-axis keys are ignored)
        limit: keep only the first N environments of the sorted expansion

    Returns:
        Sorted list of Environment
    """
    console = console or get_console()
    if limit is not None and limit < 0:
        raise DefinitionError(f"limit must be >= 0, got {limit}")

    out: List[Environment] = []
    _traverse(dict(definition), COMBINATORIC_AXES, out, 0, console)
    out.sort(key=lambda e: e.describe())

    console.print_info(f"Inferred {len(out)} environment(s)")
    for env in out:
        console.print_debug(f"  {env}")

    if limit is not None:
        console.print_info(f"Limiting to {limit} environment(s)")
        out = out[:limit]
    return out
