"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping


class BaseExporter(ABC):
    """Downstream sink for the entries a trigger fired."""

    @abstractmethod
    def export(self, record: dict) -> None:
        """Deliver a single fired entry."""

    def export_output(self, output: Mapping[str, Any], trigger_id: str) -> int:
        """Deliver every entry of a cycle output, tagged with its trigger and query."""

        logs = output.get("logs") or []
        for log in logs:
            record = dict(log)
            record["trigger_id"] = trigger_id
            record["query"] = output.get("query")
            record["result_type"] = output.get("resultType")
            self.export(record)
        return len(logs)

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""

    def __enter__(self) -> "BaseExporter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.flush()
        self.close()


__all__ = ["BaseExporter"]
