"""PaySync: connector synchronization with durable event delivery.

This package drives heterogeneous payment-provider plugins through a
provider-declared task tree and publishes every resulting change downstream:
- Paginated task-tree scheduler with per-page checkpoints
- Transactional outbox with retry counters and dead-lettering
- Idempotent synchronous event publication backed by an event ledger
- Bounded batch deletion when a connector is decommissioned
- DuckDB-based storage and a Typer CLI for all operations
"""

__version__ = "0.1.0"
