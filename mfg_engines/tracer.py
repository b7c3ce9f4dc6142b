"""
mfg_engines.tracer -- MFG_ENGINE_TRACE records for pure engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine method and logs one
    MFG_ENGINE_TRACE record per call: which engine ran, a fingerprint of the
    inputs that decide its answer, how long it took, and either a short
    summary of the result or the error code it rejected the call with.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; engines stay free of I/O.

Invariants enforced:
    - Fingerprints are quantity-insensitive to scale: ``Decimal("10")`` and
      ``Decimal("10.000")`` hash the same, so a released work order and a
      preview explosion of the same build can be matched in the logs.
    - A rejected call (any MfgKernelError) is traced with
      ``outcome="rejected"`` and re-raised unchanged.

Usage:
    @traced_engine(
        "bom_explosion", "1.0",
        fingerprint_fields=("item_id", "build_quantity"),
        summarize=lambda r: {"requirement_count": len(r.requirements)},
    )
    def explode(self, *, item_id, build_quantity, boms):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from mfg_kernel.exceptions import MfgKernelError
from mfg_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

OUTCOME_OK = "ok"
OUTCOME_REJECTED = "rejected"


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        # normalize() leaves "1E+1" for 10; format fixed-point instead
        return format(value.normalize(), "f")
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _canonical(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: Mapping[str, Any]) -> str:
    """16 hex chars of SHA-256 over ``field=value`` pairs; absent fields hash as null."""
    canonical = "|".join(f"{name}={_canonical(kwargs.get(name))}" for name in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    """
    Trace a keyword-only engine method.

    Args:
        engine_name: e.g. "bom_explosion", "bin_selection", "putaway".
        engine_version: bumped when the engine's rule changes.
        fingerprint_fields: keyword arguments that determine the answer.
        summarize: maps the return value to a few loggable fields.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            record: dict[str, Any] = {
                "trace_type": "MFG_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": compute_input_fingerprint(fingerprint_fields, kwargs),
            }
            started = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except MfgKernelError as exc:
                record.update(
                    outcome=OUTCOME_REJECTED,
                    error_code=exc.code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
                logger.info("MFG_ENGINE_TRACE", extra=record)
                raise

            record["outcome"] = OUTCOME_OK
            record["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
            if summarize is not None:
                record.update(summarize(result))
            logger.info("MFG_ENGINE_TRACE", extra=record)
            return result

        return wrapper

    return decorator
