"""
expense_engines.tracer -- EXPENSE_ENGINE_TRACE records for evaluator calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine function and logs one structured
    record per call: engine name and version, a fingerprint of the selected
    inputs, what the call decided (via an optional ``summarize`` callback)
    and how long it took.  Two calls over the same snapshot produce the same
    fingerprint, so a logged outcome can be matched to its inputs later.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    and nothing else; uses the plain ``logging`` module under the
    ``expense_kernel.engines.tracer`` name rather than kernel logging
    helpers.

Failure modes:
    - A fingerprint field the function does not receive is hashed as "null".
    - Exceptions from the engine propagate untouched; no trace is emitted.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

_logger = logging.getLogger("expense_kernel.engines.tracer")

TRACE_MESSAGE = "EXPENSE_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    """Stable text form of an engine input.

    Sets are sorted, so roster order never changes a fingerprint.  Decimals
    are normalized (``60`` and ``60.00`` hash alike).  Dataclasses expand
    field by field.
    """
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bool, int, float, str)):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    if isinstance(value, Mapping):
        items = sorted((str(k), _canonicalize(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(value, (set, frozenset)):
        return "{" + ",".join(sorted(_canonicalize(v) for v in value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """First 16 hex digits of SHA-256 over the named arguments."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    """Decorate a pure engine entry point with EXPENSE_ENGINE_TRACE logging.

    Args:
        engine_name: Engine identifier, e.g. ``"approval"``.
        engine_version: Version of the engine's semantics.
        fingerprint_fields: Parameter names hashed into ``input_fingerprint``.
            Positional and keyword calls hash the same.
        summarize: Maps the engine's result to extra trace fields.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - started) * 1000, 2)

            fields: dict[str, Any] = {
                "trace_type": TRACE_MESSAGE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "duration_ms": duration_ms,
                "function": func.__qualname__,
            }
            if summarize is not None:
                fields.update(summarize(result))
            _logger.info(TRACE_MESSAGE, extra=fields)
            return result

        return wrapper

    return decorator
