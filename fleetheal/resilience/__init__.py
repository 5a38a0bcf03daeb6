"""
Retry and backoff for remote calls.
"""

from .backoff import ErrorClassifier, classify, compute_delay, is_retryable
from .retry import RetryExecutor

__all__ = ["ErrorClassifier", "classify", "compute_delay", "is_retryable", "RetryExecutor"]
