"""Ingestion layer.

This package contains adapters that fetch data from the Task Donegeon server
(full and delta pulls, the capability probe) and turn it into validated
payloads. Only the state/store layer merges them.
"""

__all__: list[str] = []
