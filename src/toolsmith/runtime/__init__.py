"""Tool execution runtime: rate limiting, sandboxed runs and answer summaries."""

from toolsmith.runtime.rate_limit import SlidingWindowRateLimiter
from toolsmith.runtime.runner import ToolRunner, render_output, reported_failure

__all__ = [
    "SlidingWindowRateLimiter",
    "ToolRunner",
    "render_output",
    "reported_failure",
]
