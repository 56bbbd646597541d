"""Token budget snapshot derived from a terminal result event."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from agent_gateway.config import settings

logger = logging.getLogger(__name__)

# Cumulative counters first (session totals), then per-request counters
_INPUT = ("cumulativeInputTokens", "cumulative_input_tokens", "inputTokens", "input_tokens")
_OUTPUT = ("cumulativeOutputTokens", "cumulative_output_tokens", "outputTokens", "output_tokens")
_CACHE_READ = (
    "cumulativeCacheReadInputTokens",
    "cumulative_cache_read_input_tokens",
    "cacheReadInputTokens",
    "cache_read_input_tokens",
)
_CACHE_CREATION = (
    "cumulativeCacheCreationInputTokens",
    "cumulative_cache_creation_input_tokens",
    "cacheCreationInputTokens",
    "cache_creation_input_tokens",
)


def _counter(bucket: Dict[str, Any], names: tuple) -> int:
    for name in names:
        value = bucket.get(name)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and value:
            return int(value)
    return 0


def _usage_bucket(result_event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    model_usage = result_event.get("modelUsage")
    if model_usage is None:
        model_usage = result_event.get("model_usage")
    if isinstance(model_usage, dict) and model_usage:
        first = next(iter(model_usage.values()))
        return first if isinstance(first, dict) else None
    # The SDK drops modelUsage and only keeps the flat usage object
    usage = result_event.get("usage")
    if isinstance(usage, dict) and usage:
        return usage
    return None


def extract_token_budget(result_event: Any, context_window: Optional[int] = None) -> Optional[Dict[str, int]]:
    """Return ``{"used": n, "total": budget}`` or None when no usage is present.

    ``total`` is the configured budget ceiling, not the model context size.
    """
    if not isinstance(result_event, dict):
        return None
    if result_event.get("type", "result") != "result":
        return None
    bucket = _usage_bucket(result_event)
    if bucket is None:
        return None

    input_tokens = _counter(bucket, _INPUT)
    output_tokens = _counter(bucket, _OUTPUT)
    cache_read = _counter(bucket, _CACHE_READ)
    cache_creation = _counter(bucket, _CACHE_CREATION)
    used = input_tokens + output_tokens + cache_read + cache_creation
    total = int(context_window or settings.tokens.context_window)
    logger.debug(
        "[Tokens] input=%d output=%d cache=%d total=%d/%d",
        input_tokens, output_tokens, cache_read + cache_creation, used, total,
    )
    return {"used": used, "total": total}
