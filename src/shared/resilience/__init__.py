"""Resilience patterns for upstream model and search calls."""

from src.shared.resilience.retry import RetryExhausted, RetryPolicy, retry_async

__all__ = ["RetryExhausted", "RetryPolicy", "retry_async"]
