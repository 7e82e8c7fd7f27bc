"""Table-commit contracts and the Delta Lake adapter."""

from lakecommit.table.contracts import AppendTransaction, TableSnapshot, TableStore
from lakecommit.table.delta import DeltaAppendTransaction, DeltaTableStore

__all__ = [
    "AppendTransaction",
    "DeltaAppendTransaction",
    "DeltaTableStore",
    "TableSnapshot",
    "TableStore",
]
