"""
Schema capability check.

Databases created by older releases may lack the enrichment and security
columns added later. Base.metadata.create_all() only creates missing tables,
it never adds columns, so the live schema is inspected once at startup and
queries select only the columns that really exist. Callers fill in defaults
for whatever is missing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List

from sqlalchemy import Table, column, inspect
from sqlalchemy import table as table_clause
from sqlalchemy.sql.expression import TableClause

logger = logging.getLogger(__name__)

# table name -> columns that a partially-migrated database may not have
OPTIONAL_COLUMNS: Dict[str, tuple] = {
    "users": (
        "failed_login_attempts",
        "account_locked_until",
        "last_login",
        "subscription_plan_type",
        "subscription_started_at",
    ),
    "videos": ("genre", "rating", "release_year", "view_count"),
    "subscriptions": ("current_period_start", "current_period_end", "cancel_at_period_end"),
}


@dataclass(frozen=True)
class SchemaCapabilities:
    missing: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def inspect(cls, engine) -> "SchemaCapabilities":
        inspector = inspect(engine)
        missing = {}
        for table_name, optional in OPTIONAL_COLUMNS.items():
            if not inspector.has_table(table_name):
                continue
            present = {col["name"] for col in inspector.get_columns(table_name)}
            absent = frozenset(name for name in optional if name not in present)
            if absent:
                logger.warning(
                    "Table %s is missing optional columns %s; serving defaults",
                    table_name,
                    ", ".join(sorted(absent)),
                )
                missing[table_name] = absent
        return cls(missing=missing)

    def has(self, table_name: str, column_name: str) -> bool:
        return column_name not in self.missing.get(table_name, frozenset())

    def columns(self, table: Table) -> List:
        """Columns of `table` that exist in the live database."""
        absent = self.missing.get(table.name, frozenset())
        return [col for col in table.c if col.name not in absent]

    def insertable(self, table: Table) -> TableClause:
        """`table` reduced to its live columns, without the mapped Python defaults.

        An INSERT on the full Table adds defaults such as
        failed_login_attempts=0 even when the live table lacks the column.
        """
        return table_clause(table.name, *[column(col.name, col.type) for col in self.columns(table)])

    def writable(self, table_name: str, values: dict) -> dict:
        """Drop keys naming columns the live table does not have."""
        absent = self.missing.get(table_name, frozenset())
        return {k: v for k, v in values.items() if k not in absent}
