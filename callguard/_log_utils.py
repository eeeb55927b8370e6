"""Internal utilities for callguard logging.

This module is internal and may change at any time.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, MutableMapping
from typing import Any, Literal

GuardLogExtraMode = Literal["dict", "flatten", "json"]
"""Mode controlling how guard context is added to log record extra.

Values:
    dict: (default) Add context as a nested dictionary under a single key.
        Suitable for logging handlers that support nested structures.
    flatten: Add each context field as a separate top-level key with a
        namespaced prefix. Values that are not primitives (str/int/float/bool)
        are converted to strings. Use this for logging pipelines that require
        flat, scalar attributes.
    json: Add context as a JSON string under a single key. Useful when
        downstream systems expect string values but you want structured data.
"""

GUARD_LOG_EXTRA_MODES: tuple[GuardLogExtraMode, ...] = ("dict", "flatten", "json")


def _flatten_value(v: Any) -> Any:
    if not isinstance(v, (str, int, float, bool, type(None))):
        return str(v)
    return v


def _apply_guard_context_to_extra(
    extra: MutableMapping[str, Any],
    *,
    key: str,
    prefix: str,
    ctx: Mapping[str, Any],
    mode: GuardLogExtraMode,
) -> None:
    """Apply guard context to log record extra based on the configured mode.

    Args:
        extra: The mutable extra dict to update.
        key: The key to use for dict/json modes (e.g., "callguard_guard").
        prefix: The prefix to use for flatten mode keys (e.g., "callguard.guard").
        ctx: The context mapping containing guard fields.
        mode: The mode controlling how context is added.
    """
    if mode == "json":
        extra[key] = json.dumps(ctx, separators=(",", ":"), default=str)
    elif mode == "flatten":
        for k, v in ctx.items():
            extra[f"{prefix}.{k}"] = _flatten_value(v)
    else:
        extra[key] = dict(ctx)
