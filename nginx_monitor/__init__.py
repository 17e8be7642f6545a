"""Upstream health and license monitor for NGINX Plus."""

from .config import ConfigError, MonitorConfig, ThresholdConfig, load_config
from .evaluator import evaluate
from .nginx_client import NginxPlusFetcher
from .poller import LoopState, PollLoop
from .state import StateDiff, StateTracker

__all__ = [
    "ConfigError",
    "LoopState",
    "MonitorConfig",
    "NginxPlusFetcher",
    "PollLoop",
    "StateDiff",
    "StateTracker",
    "ThresholdConfig",
    "evaluate",
    "load_config",
]
