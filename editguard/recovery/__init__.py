"""Failure classification, retry planning, backoff and deadlines."""

from editguard.recovery.backoff import RetryPolicy
from editguard.recovery.classifier import FailureClassifier, classify_message
from editguard.recovery.strategist import RetryStrategist, retry_statistics
from editguard.recovery.timeout import execute_with_timeout

__all__ = [
    "FailureClassifier",
    "RetryPolicy",
    "RetryStrategist",
    "classify_message",
    "execute_with_timeout",
    "retry_statistics",
]
