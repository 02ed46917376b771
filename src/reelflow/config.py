"""Engine configuration for reelflow."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

__all__ = ["EngineConfig"]


@dataclass
class EngineConfig:
    """Tunable limits and intervals of the run executor.

    Attributes:
        lock_staleness: Age after which a task version lock may be reclaimed.
        poll_interval: Seconds between resume poller sweeps.
        max_retries: Failed attempts after which a node is no longer executed.
        max_video_duration: Longest video, in seconds, a video node may request.
        default_video_duration: Video duration used when a node does not set one.
        trash_retention: How long trashed assets are kept before purging.
        default_image_count: Images generated when a node does not set ``outputCount``.
        llm_max_tokens: Default max tokens for LLM tool nodes.
        llm_temperature: Default sampling temperature of LLM tool nodes.
        abandon_reclaimed_runs: Cancel the previous holder's run when a stale lock
            is reclaimed from it.

    Example:
        >>> from datetime import timedelta
        >>> config = EngineConfig(lock_staleness=timedelta(minutes=10), poll_interval=5.0)
    """

    lock_staleness: timedelta = timedelta(minutes=30)
    poll_interval: float = 15.0
    max_retries: int = 3
    max_video_duration: int = 15
    default_video_duration: int = 10
    trash_retention: timedelta = timedelta(hours=24)
    default_image_count: int = 1
    llm_max_tokens: int = 1000
    llm_temperature: float = 0.7
    abandon_reclaimed_runs: bool = True
