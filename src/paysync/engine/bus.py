"""Message bus publishers.

Delivery is fire-and-forget from the caller's perspective: a publisher
returning without raising means the message was accepted.
"""

import logging
import threading
from pathlib import Path
from typing import Protocol

from paysync.config import EventsConfig
from paysync.errors import TransientError
from paysync.models import EventMessage

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def publish(self, message: EventMessage) -> None: ...


class FilePublisher:
    """Appends messages as JSON lines to a local file."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def publish(self, message: EventMessage) -> None:
        line = message.model_dump_json() + "\n"
        try:
            with self._lock, self.path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise TransientError(f"failed to append event to {self.path}: {e}") from e
        logger.debug(f"Published {message.type.value} {message.idempotency_key}")


class LoggingPublisher:
    """Only logs messages; useful for dry runs."""

    def publish(self, message: EventMessage) -> None:
        logger.info(f"📨 {message.type.value} {message.idempotency_key}")


def build_publisher(config: EventsConfig) -> Publisher:
    if config.publisher == "log":
        return LoggingPublisher()
    return FilePublisher(config.file_path)
