"""Token 用量估算与统计。"""

from infonex_core.metrics.token_counter import (
    NullUsageRecorder,
    TokenUsage,
    UsageRecorder,
    UsageTracker,
    calculate_request_usage,
    count_tokens,
)

__all__ = [
    "NullUsageRecorder",
    "TokenUsage",
    "UsageRecorder",
    "UsageTracker",
    "calculate_request_usage",
    "count_tokens",
]
