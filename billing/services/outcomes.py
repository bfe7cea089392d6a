from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from billing.exceptions import PartialBatchFailure

T = TypeVar("T")


@dataclass(slots=True)
class BatchItem(Generic[T]):
    key: object
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class BatchOutcome(Generic[T]):
    items: list[BatchItem[T]] = field(default_factory=list)

    def add_success(self, key: object, value: T) -> None:
        self.items.append(BatchItem(key=key, value=value))

    def add_failure(self, key: object, error: Exception) -> None:
        self.items.append(BatchItem(key=key, error=error))

    @property
    def succeeded(self) -> list[BatchItem[T]]:
        return [item for item in self.items if item.ok]

    @property
    def failed(self) -> list[BatchItem[T]]:
        return [item for item in self.items if not item.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def values(self) -> list[T]:
        return [item.value for item in self.items if item.ok]

    def by_key(self) -> dict[object, BatchItem[T]]:
        return {item.key: item for item in self.items}

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self)
