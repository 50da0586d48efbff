"""Connector lifecycle: install, sync, reset and uninstall.

Ties plugins, storage, the scheduler, the event paths and the batch deleter
together using the current settings.
"""

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from paysync.config import PaySyncSettings, get_settings
from paysync.errors import FailedPreconditionError, UnimplementedError
from paysync.models import Connector, ConnectorID, EntityKind, ItemKind
from paysync.plugins import PluginWrapper, create_plugin, get_plugin_spec
from paysync.storage import Storage

from .bus import Publisher, build_publisher
from .deleter import BatchDeleter
from .events import EventSender, connector_reset_event
from .scheduler import CycleStats, Scheduler
from .steps import Heartbeat, LocalStepRunner, LoggingHeartbeat, RetryPolicy

logger = logging.getLogger(__name__)

# Dropped by a reset, event ledger included; the connector and its webhooks stay.
RESET_KINDS: tuple[EntityKind, ...] = (
    *(EntityKind(kind.value) for kind in ItemKind),
    EntityKind.STATES,
    EntityKind.OUTBOX_EVENTS,
    EntityKind.EVENTS_SENT,
)


class ConnectorManager:
    """Facade over the connector lifecycle."""

    def __init__(
        self,
        storage: Storage,
        settings: PaySyncSettings | None = None,
        publisher: Publisher | None = None,
        heartbeat: Heartbeat | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.publisher = publisher or build_publisher(self.settings.events)
        self.heartbeat = heartbeat or LoggingHeartbeat()
        self.cancel_event = cancel_event
        self.step_runner = LocalStepRunner(
            retry_policy=RetryPolicy.from_config(self.settings.retry),
            timeout=self.settings.scheduler.fetch_timeout,
            cancel_event=cancel_event,
        )
        self.deleter = BatchDeleter(
            storage,
            batch_size=self.settings.deleter.batch_size,
            heartbeat=self.heartbeat,
            cancel_event=cancel_event,
        )

    def _plugin(self, connector: Connector) -> PluginWrapper:
        return create_plugin(connector.provider, connector.name, connector.config)

    def install(
        self, provider: str, config: dict[str, Any], name: str | None = None
    ) -> Connector:
        """Install a connector and store the task tree its plugin declares."""
        spec = get_plugin_spec(provider)
        connector_id = ConnectorID(provider=spec.provider)
        name = name or f"{spec.provider}-{str(connector_id.reference)[:8]}"

        plugin = create_plugin(spec.provider, name, config)
        tree = self.step_runner.execute(
            lambda: plugin.install(connector_id), key=f"{connector_id}/install"
        )

        connector = Connector(
            id=connector_id,
            name=name,
            config=config,
            created_at=datetime.now(UTC),
            task_tree=tree,
        )
        self.storage.install_connector(connector)
        logger.info(f"✅ Installed connector {connector_id} ({name})")
        return connector

    def list_connectors(self) -> list[Connector]:
        return self.storage.list_connectors()

    def run_cycle(self, connector_id: ConnectorID) -> CycleStats:
        """Run one sync cycle of a connector's task tree.

        Raises:
            FailedPreconditionError: If the connector is being uninstalled
        """
        connector = self.storage.get_connector(connector_id)
        if connector.scheduled_for_deletion:
            raise FailedPreconditionError(
                f"connector {connector_id} is scheduled for deletion",
                reason="CONNECTOR_SCHEDULED_FOR_DELETION",
            )

        page_size = get_plugin_spec(connector.provider).page_size
        scheduler = Scheduler(
            connector,
            self._plugin(connector),
            self.storage,
            page_size=page_size or self.settings.scheduler.default_page_size,
            step_runner=self.step_runner,
            heartbeat=self.heartbeat,
            event_sender=EventSender(self.storage, self.publisher),
            outbox_enabled=self.settings.events.outbox_enabled,
            cancel_event=self.cancel_event,
        )
        return scheduler.run_cycle()

    def reset(self, connector_id: ConnectorID) -> dict[EntityKind, int]:
        """Drop synced data and cursors so the next cycle starts from scratch."""
        self.storage.get_connector(connector_id)

        deleted = self.deleter.delete_all_for_connector(connector_id, RESET_KINDS)
        self.storage.outbox_insert([connector_reset_event(connector_id)])
        logger.info(f"Reset connector {connector_id}: {sum(deleted.values())} rows deleted")
        return deleted

    def uninstall(self, connector_id: ConnectorID) -> dict[EntityKind, int]:
        """Uninstall from the provider, then purge every record of the connector."""
        connector = self.storage.get_connector(connector_id)
        self.storage.schedule_connector_deletion(connector_id)

        webhook_configs = self.storage.list_webhook_configs(connector_id)
        plugin = self._plugin(connector)
        try:
            self.step_runner.execute(
                lambda: plugin.uninstall(connector_id, webhook_configs),
                key=f"{connector_id}/uninstall",
            )
        except UnimplementedError:
            logger.debug(f"Provider {connector.provider} has no uninstall step")

        deleted = self.deleter.delete_all_for_connector(connector_id)
        self.storage.delete_connector(connector_id)
        logger.info(f"🗑️  Uninstalled connector {connector_id}: {sum(deleted.values())} rows deleted")
        return deleted
