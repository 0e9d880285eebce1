"""
Photo Stylizer

Client-side orchestration for a remote, slow, rate-limited image
stylization service.

Features:
- Content-addressed result cache with bounded FIFO eviction
- Optional upload optimization (downscale + JPEG re-encode)
- Single awaitable transformation over a create-then-poll job API
- Exponential-backoff polling with cooperative cancellation
- Typed error taxonomy, structured logging and Prometheus metrics
"""

__version__ = "1.0.0"
__author__ = "Photo Stylizer Team"
