"""Typed environment variable declarations.

Each variable is described once by an ``EnvVarSpec``; ``parse`` reads and
converts it, ``validate`` checks a whole list at startup against a pydantic
model built from the specs' field types.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError, create_model

from utils import log

logger = log.get_logger(__name__)


@dataclass(frozen=True)
class EnvVarSpec:
    id: str
    default: Optional[str] = None
    parse: Optional[Callable[[str], Any]] = None
    type: Tuple[Any, Any] = field(default=(str, ...))
    is_optional: bool = False
    is_secret: bool = False


def raw(spec: EnvVarSpec) -> Optional[str]:
    value = os.environ.get(spec.id)
    if value is None or value == "":
        return spec.default
    return value


def parse(spec: EnvVarSpec) -> Any:
    """Read *spec* from the environment, applying its parse function.

    Returns ``None`` for an unset optional variable without a default.
    """
    value = raw(spec)
    if value is None:
        return None
    if spec.parse is not None:
        return spec.parse(value)
    return value


def _describe(spec: EnvVarSpec, value: Any) -> str:
    if spec.is_secret and value is not None:
        return "********"
    return repr(value)


def validate(specs: List[EnvVarSpec]) -> bool:
    """Parse and type-check every spec. Logs each problem and returns False on any."""
    fields = {}
    values = {}
    ok = True

    for spec in specs:
        try:
            value = parse(spec)
        except Exception as e:
            logger.error(f"Env var {spec.id}: failed to parse {_describe(spec, raw(spec))}: {e}")
            ok = False
            continue

        if value is None:
            if not spec.is_optional:
                logger.error(f"Env var {spec.id} is required but not set")
                ok = False
            continue

        fields[spec.id] = spec.type
        values[spec.id] = value

    if fields:
        model = create_model("EnvVars", **fields)
        try:
            model(**values)
        except ValidationError as e:
            for error in e.errors():
                name = error["loc"][0] if error["loc"] else "?"
                logger.error(f"Env var {name}: {error['msg']}")
            ok = False

    return ok
