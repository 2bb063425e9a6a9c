"""Connection-supervised retry runner for PostgreSQL work loops."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import AppConfig, RetryConfig, WatchConfig, load_config
from .connections import (
    AsyncpgConnectionProvider,
    ConnectionBackendError,
    ConnectionFailedError,
    ConnectionLostError,
    ConnectionProvider,
    ConnectionSession,
    DemoConnectionProvider,
    LossSignal,
)
from .events import EventHub, EventKind, LifecycleEvent
from .models import ConnectionProfile, Manifest
from .retry import RetryPolicy, RetryState, with_retry
from .runner import SupervisedRunner, run_supervised, run_with_retry
from .subscriptions import Notification, Subscription, SubscriptionError, subscribe
from .watcher import ChannelWatcher

__all__ = [
    "AppConfig",
    "AsyncpgConnectionProvider",
    "ChannelWatcher",
    "ConnectionBackendError",
    "ConnectionFailedError",
    "ConnectionLostError",
    "ConnectionProfile",
    "ConnectionProvider",
    "ConnectionSession",
    "DemoConnectionProvider",
    "EventHub",
    "EventKind",
    "LifecycleEvent",
    "LossSignal",
    "Manifest",
    "Notification",
    "RetryConfig",
    "RetryPolicy",
    "RetryState",
    "Subscription",
    "SubscriptionError",
    "SupervisedRunner",
    "WatchConfig",
    "__version__",
    "load_config",
    "run_supervised",
    "run_with_retry",
    "subscribe",
    "with_retry",
]
