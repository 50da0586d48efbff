"""Scheduler, reliability layer and connector lifecycle."""

from .bus import FilePublisher, LoggingPublisher, Publisher, build_publisher
from .connectors import ConnectorManager
from .deleter import BatchDeleter
from .events import EventSender, to_message
from .outbox import OutboxPublisher, PublishResult
from .scheduler import CycleStats, Scheduler, TaskRun
from .steps import (
    Heartbeat,
    LocalStepRunner,
    LoggingHeartbeat,
    RetryPolicy,
    StepRunner,
    check_cancelled,
)

__all__ = [
    "BatchDeleter",
    "ConnectorManager",
    "CycleStats",
    "EventSender",
    "FilePublisher",
    "Heartbeat",
    "LocalStepRunner",
    "LoggingHeartbeat",
    "LoggingPublisher",
    "OutboxPublisher",
    "Publisher",
    "PublishResult",
    "RetryPolicy",
    "Scheduler",
    "StepRunner",
    "TaskRun",
    "build_publisher",
    "check_cancelled",
    "to_message",
]
