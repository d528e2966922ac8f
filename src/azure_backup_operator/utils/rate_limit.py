"""Rate limiting utilities for API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from .. import metrics

_F = TypeVar("_F", bound=Callable[..., Any])

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "10.0"))
_AZURE_RATE_LIMIT_PER_SECOND = float(os.getenv("AZURE_RATE_LIMIT_PER_SECOND", "5.0"))


class _Throttle:
    """Minimum-interval throttle shared by all calls of one API type."""

    def __init__(self, api_type: str, rate_per_second: float):
        self.api_type = api_type
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self.last_call_time = 0.0
        self.lock = threading.Lock()

    def wait(self) -> None:
        with self.lock:
            time_since_last_call = time.time() - self.last_call_time
            if time_since_last_call < self.min_interval:
                metrics.rate_limit_hits_total.labels(api_type=self.api_type).inc()
                time.sleep(self.min_interval - time_since_last_call)
            self.last_call_time = time.time()


_k8s_throttle = _Throttle("k8s", _K8S_RATE_LIMIT_PER_SECOND)
_azure_throttle = _Throttle("azure", _AZURE_RATE_LIMIT_PER_SECOND)


def _throttled(throttle: _Throttle, func: _F) -> _F:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        throttle.wait()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls.

    Kopf runs handlers for different objects in a worker pool, so calls from
    all workers share one throttle.
    """
    return _throttled(_k8s_throttle, func)


def rate_limit_azure(func: _F) -> _F:
    """Decorator to rate limit Azure management API calls."""
    return _throttled(_azure_throttle, func)
