"""Connector synchronization scheduler.

Interprets a connector's task tree. Every task runs its pagination loop as a
generator: after persisting a page it yields the child task runs instantiated
for that page's items, and resumes (checkpoint, next page) once those
children have completed. The generators are driven from an explicit stack,
so tree depth never grows the Python call stack.

Within one task, pages are requested strictly in cursor order. A fetch or
storage error aborts the cycle; checkpoints already committed are kept, and
the next cycle resumes from the last completed page.
"""

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from paysync.models import (
    Connector,
    FetchPage,
    FetchState,
    FromPayload,
    ItemKind,
    PSPItem,
    TaskNode,
    TaskTree,
    TaskType,
    stored_item_id,
)
from paysync.plugins import PluginWrapper
from paysync.storage import Storage

from .events import EventSender, outbox_event_for_item, payment_deleted_event, to_message
from .steps import Heartbeat, LocalStepRunner, LoggingHeartbeat, StepRunner, check_cancelled

logger = logging.getLogger(__name__)

TaskGenerator = Iterator[list["TaskRun"]]


@dataclass(frozen=True)
class TaskRun:
    """One instantiation of a task node, for one parent item (or none)."""

    node: TaskNode
    from_payload: FromPayload | None = None

    @property
    def reference(self) -> str:
        return FetchState.reference_for(self.node, self.from_payload)


@dataclass
class CycleStats:
    tasks: int = 0
    pages: int = 0
    items: Counter[str] = field(default_factory=Counter)
    webhooks: int = 0
    payments_deleted: int = 0


def from_payload_for(node: TaskNode, item: PSPItem) -> FromPayload:
    """Serialise a fetched item as the input of its children."""
    return FromPayload(id=f"{node.key}/{item.reference}", payload=item.model_dump(mode="json"))


def dedup_by_reference(items: Sequence[PSPItem]) -> list[PSPItem]:
    """Drop repeated references within a page, keeping the last version."""
    unique: dict[str, PSPItem] = {}
    for item in items:
        unique[item.reference] = item
    if len(unique) != len(items):
        logger.debug(f"Dropped {len(items) - len(unique)} duplicate items in page")
    return list(unique.values())


class Scheduler:
    """Runs sync cycles for one connector."""

    def __init__(
        self,
        connector: Connector,
        plugin: PluginWrapper,
        storage: Storage,
        page_size: int,
        step_runner: StepRunner | None = None,
        heartbeat: Heartbeat | None = None,
        event_sender: EventSender | None = None,
        outbox_enabled: bool = True,
        cancel_event: threading.Event | None = None,
    ):
        if not outbox_enabled and event_sender is None:
            raise ValueError("event_sender is required when the outbox is disabled")

        self.connector = connector
        self.connector_id = connector.id
        self.plugin = plugin
        self.storage = storage
        self.page_size = page_size
        self.step_runner = step_runner or LocalStepRunner()
        self.heartbeat = heartbeat or LoggingHeartbeat()
        self.event_sender = event_sender
        self.outbox_enabled = outbox_enabled
        self.cancel_event = cancel_event
        self.stats = CycleStats()

        self._handlers: dict[TaskType, Callable[[TaskRun], TaskGenerator]] = {
            TaskType.FETCH_ACCOUNTS: self._fetch_accounts,
            TaskType.FETCH_BALANCES: self._fetch_balances,
            TaskType.FETCH_EXTERNAL_ACCOUNTS: self._fetch_external_accounts,
            TaskType.FETCH_PAYMENTS: self._fetch_payments,
            TaskType.FETCH_OTHERS: self._fetch_others,
            TaskType.CREATE_WEBHOOKS: self._create_webhooks,
        }
        missing = set(TaskType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for task types: {sorted(t.value for t in missing)}")

    def run_cycle(self, tree: TaskTree | None = None) -> CycleStats:
        """Run every root task of the tree in declaration order."""
        tree = self.connector.task_tree if tree is None else tree
        logger.info(f"Starting sync cycle for {self.connector_id} ({len(tree)} root tasks)")
        for node in tree:
            self.execute_task(node)
        logger.info(
            f"Finished sync cycle for {self.connector_id}: {self.stats.tasks} tasks, "
            f"{self.stats.pages} pages, {sum(self.stats.items.values())} items"
        )
        return self.stats

    def execute_task(self, node: TaskNode, from_payload: FromPayload | None = None) -> None:
        """Run a task and, transitively, every child it instantiates."""
        stack: list[TaskGenerator] = [self._start(TaskRun(node, from_payload))]
        while stack:
            try:
                children = next(stack[-1])
            except StopIteration:
                stack.pop()
                continue
            # Reversed so the first child runs first
            stack.extend(self._start(child) for child in reversed(children))

    def _start(self, run: TaskRun) -> TaskGenerator:
        self.stats.tasks += 1
        logger.debug(f"Running task {run.reference} for {self.connector_id}")
        return self._handlers[run.node.task_type](run)

    def _fetch_accounts(self, run: TaskRun) -> TaskGenerator:
        return self._paginate(
            run, lambda state: self.plugin.fetch_next_accounts(run.from_payload, state, self.page_size)
        )

    def _fetch_balances(self, run: TaskRun) -> TaskGenerator:
        return self._paginate(
            run, lambda state: self.plugin.fetch_next_balances(run.from_payload, state, self.page_size)
        )

    def _fetch_external_accounts(self, run: TaskRun) -> TaskGenerator:
        return self._paginate(
            run,
            lambda state: self.plugin.fetch_next_external_accounts(
                run.from_payload, state, self.page_size
            ),
        )

    def _fetch_payments(self, run: TaskRun) -> TaskGenerator:
        return self._paginate(
            run, lambda state: self.plugin.fetch_next_payments(run.from_payload, state, self.page_size)
        )

    def _fetch_others(self, run: TaskRun) -> TaskGenerator:
        return self._paginate(
            run,
            lambda state: self.plugin.fetch_next_others(
                run.node.name, run.from_payload, state, self.page_size
            ),
        )

    def _create_webhooks(self, run: TaskRun) -> TaskGenerator:
        check_cancelled(self.cancel_event)
        configs = self.step_runner.execute(
            lambda: self.plugin.create_webhooks(self.connector_id, run.from_payload),
            key=f"{self.connector_id}/{run.reference}",
        )
        self.storage.upsert_webhook_configs(self.connector_id, configs)
        self.stats.webhooks += len(configs)
        yield from ()

    def _paginate(
        self, run: TaskRun, fetch: Callable[[Any], FetchPage[Any]]
    ) -> TaskGenerator:
        reference = run.reference
        stored = self.storage.get_state(self.connector_id, reference)
        state = stored.state if stored else None
        pages = stored.pages_fetched if stored else 0

        while True:
            check_cancelled(self.cancel_event)
            page = self.step_runner.execute(
                lambda state=state: fetch(state),
                key=f"{self.connector_id}/{reference}/{pages + 1}",
            )
            items = dedup_by_reference(page.items)
            self._persist(items)
            if page.payments_to_delete and run.node.task_type is TaskType.FETCH_PAYMENTS:
                self._delete_payments(page.payments_to_delete)
            pages += 1
            self.stats.pages += 1
            self.stats.items.update(item.kind.value for item in items)

            if run.node.children and items:
                if self._children_allowed():
                    yield [
                        TaskRun(child, from_payload_for(run.node, item))
                        for item in items
                        for child in run.node.children
                    ]
                else:
                    logger.info(
                        f"Connector {self.connector_id} is scheduled for deletion, "
                        f"skipping child tasks of {reference}"
                    )

            self.storage.upsert_state(
                self.connector_id,
                FetchState(
                    reference=reference,
                    state=page.new_state,
                    has_more=page.has_more,
                    pages_fetched=pages,
                ),
            )
            self.heartbeat.record({"task": reference, "page": pages, "items": len(items)})

            state = page.new_state
            if not page.has_more:
                break

    def _persist(self, items: list[PSPItem]) -> None:
        if not items:
            return

        events = [outbox_event_for_item(self.connector_id, item) for item in items]
        if self.outbox_enabled:
            self.storage.upsert_items(self.connector_id, items, events)
            return

        self.storage.upsert_items(self.connector_id, items)
        for event in events:
            self.event_sender.send_event(event.id, lambda event=event: to_message(event))  # type: ignore[union-attr]

    def _delete_payments(self, references: Sequence[str]) -> None:
        payment_ids = [
            stored_item_id(self.connector_id, ItemKind.PAYMENT, reference)
            for reference in dict.fromkeys(references)
        ]
        events = [payment_deleted_event(self.connector_id, payment_id) for payment_id in payment_ids]
        if self.outbox_enabled:
            deleted = self.storage.delete_items(
                self.connector_id, ItemKind.PAYMENT, payment_ids, events
            )
        else:
            deleted = self.storage.delete_items(self.connector_id, ItemKind.PAYMENT, payment_ids)
            for event in events:
                self.event_sender.send_event(event.id, lambda event=event: to_message(event))  # type: ignore[union-attr]

        self.stats.payments_deleted += deleted
        logger.debug(f"Deleted {deleted} of {len(payment_ids)} payments for {self.connector_id}")

    def _children_allowed(self) -> bool:
        connector = self.storage.get_connector(self.connector_id)
        return not connector.scheduled_for_deletion
