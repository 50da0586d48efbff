"""Task tree and pagination state models.

A provider declares, at install time, a static tree of typed tasks. Fetch
tasks may have children that are instantiated once per item fetched by the
parent, each with an independent FetchState.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class TaskType(str, Enum):
    """Closed set of task kinds a connector can declare."""

    FETCH_ACCOUNTS = "FETCH_ACCOUNTS"
    FETCH_BALANCES = "FETCH_BALANCES"
    FETCH_EXTERNAL_ACCOUNTS = "FETCH_EXTERNAL_ACCOUNTS"
    FETCH_PAYMENTS = "FETCH_PAYMENTS"
    FETCH_OTHERS = "FETCH_OTHERS"
    CREATE_WEBHOOKS = "CREATE_WEBHOOKS"


class TaskNode(BaseModel):
    """One node of a connector task tree. Immutable once installed."""

    model_config = ConfigDict(frozen=True)

    task_type: TaskType
    name: str = ""
    children: tuple["TaskNode", ...] = ()

    @model_validator(mode="after")
    def validate_shape(self) -> "TaskNode":
        if self.task_type is TaskType.FETCH_OTHERS and not self.name:
            raise ValueError("FETCH_OTHERS tasks require a name")
        if self.task_type is TaskType.CREATE_WEBHOOKS and self.children:
            raise ValueError("CREATE_WEBHOOKS tasks cannot have children")
        return self

    @property
    def key(self) -> str:
        """Identity of the node used in state references."""
        if self.name:
            return f"{self.task_type.value}:{self.name}"
        return self.task_type.value


TaskTree = tuple[TaskNode, ...]

_tree_adapter: TypeAdapter[TaskTree] = TypeAdapter(TaskTree)


def tree_to_json(tree: TaskTree) -> str:
    return _tree_adapter.dump_json(tree).decode()


def tree_from_json(raw: str | bytes) -> TaskTree:
    return _tree_adapter.validate_json(raw)


class FromPayload(BaseModel):
    """Serialized parent item handed to a child task."""

    model_config = ConfigDict(frozen=True)

    id: str
    payload: dict[str, Any]


class FetchState(BaseModel):
    """Provider-owned cursor checkpointed after every page."""

    reference: str
    state: Any = None
    has_more: bool = True
    pages_fetched: int = Field(default=0, ge=0)

    @staticmethod
    def reference_for(node: TaskNode, from_payload: FromPayload | None) -> str:
        """State key of a node run: node key, plus the parent payload id."""
        if from_payload is None:
            return node.key
        return f"{node.key}-{from_payload.id}"
