# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Policy Enforcement Point — Storage-boundary tenant scoping checks.

Independent of the scoped accessor. Every ScopedSession carries a tenant
marker, bound once per session. The marker is derived from the stores
table inside the session's transaction (the store must exist and be
owned by the context's principal), so a hand-built context with a foreign
store_id is rejected before any scoped statement runs. Listeners
on the session re-validate each statement and each flushed or loaded row
against that marker:

  - do_orm_execute: SELECT/UPDATE/DELETE on a scoped table must carry a
    top-level `store_id == <marker>` conjunct for that table.
  - before_flush: new/dirty/deleted scoped rows must belong to the
    marker's store; store_id is immutable on existing rows.
  - loaded_as_persistent: rows coming back from the database must belong
    to the marker's store.

A scoped table is any table whose `store_id` column is flagged with
`info={"tenant_key": True}`.

On PostgreSQL the same rule is also declared as row-level security
policies keyed on the transaction-local `app.current_store_id` setting.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Set

from sqlalchemy import DDL, MetaData, Table, event, inspect, select, text
from sqlalchemy import column as sa_column, table as sa_table
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import ORMExecuteState, Session
from sqlalchemy.sql import operators, visitors
from sqlalchemy.sql.elements import (
    BinaryExpression,
    BindParameter,
    BooleanClauseList,
    ColumnClause,
    Grouping,
    TextClause,
)

from storeguard.core.errors import PolicyViolation
from storeguard.core.metrics import platform_metrics
from storeguard.core.tenant import TenantContext

logger = logging.getLogger("storeguard.policy")

TENANT_COLUMN = "store_id"
MARKER_KEY = "storeguard.store_id"
REJECTED_KEY = "storeguard.rejected"
PG_SETTING = "app.current_store_id"

# Ownership lookup for marker binding; a bare table clause keeps models out of this module.
_stores = sa_table("stores", sa_column("id"), sa_column("owner_id"))

_scoped_table_names: Set[str] = set()


class ScopedSession(Session):
    """Sync session class behind every AsyncSession; policy listeners attach here."""


# ── Scoped table detection ──────────────────────────────────

def is_scoped_table(table) -> bool:
    columns = getattr(table, "c", None)
    if columns is None or TENANT_COLUMN not in columns:
        return False
    return bool(columns[TENANT_COLUMN].info.get("tenant_key"))


def is_scoped_instance(instance) -> bool:
    table = getattr(type(instance), "__table__", None)
    return table is not None and is_scoped_table(table)


def scoped_table_names() -> Set[str]:
    return set(_scoped_table_names)


# ── Marker management ───────────────────────────────────────

def current_marker(session: Session) -> Optional[int]:
    return session.info.get(MARKER_KEY)


async def bind_tenant_marker(session: AsyncSession, context: TenantContext) -> None:
    """
    Bind the session to the context's store.

    The marker is derived here, not taken on trust: the store row is read
    inside the session's own transaction and its owner must be the
    context's principal. A missing store or a different owner is a
    violation, as is binding a second, different store to the session.
    """
    sync_session = session.sync_session
    if sync_session.info.get(REJECTED_KEY):
        raise PolicyViolation("session previously rejected", store_id=current_marker(sync_session))
    existing = current_marker(sync_session)
    if existing is not None and existing != context.store_id:
        _reject(
            sync_session, f"marker already bound to store {existing}", context.store_id,
            check="marker",
        )

    # Core-level execution on the connection; not routed through do_orm_execute.
    conn = await session.connection()
    owner_id = (
        await conn.execute(select(_stores.c.owner_id).where(_stores.c.id == context.store_id))
    ).scalar_one_or_none()
    if owner_id is None:
        _reject(
            sync_session, f"marker for unknown store {context.store_id}", context.store_id,
            check="marker",
        )
    if owner_id != context.principal.principal_id:
        _reject(
            sync_session,
            f"principal {context.principal.subject!r} does not own store {context.store_id}",
            context.store_id,
            check="marker",
        )
    sync_session.info[MARKER_KEY] = context.store_id

    if session.get_bind().dialect.name == "postgresql":
        await conn.execute(
            text("SELECT set_config(:name, :value, true)"),
            {"name": PG_SETTING, "value": str(context.store_id)},
        )


def _reject(
    session: Session,
    reason: str,
    store_id: Optional[int] = None,
    check: str = "statement",
) -> None:
    session.info[REJECTED_KEY] = True
    platform_metrics.inc("policy_violations", check=check)
    logger.critical(
        "Policy violation: %s", reason,
        extra={"store_id": store_id if store_id is not None else current_marker(session)},
    )
    raise PolicyViolation(reason, store_id=store_id)


# ── Statement inspection ────────────────────────────────────

def _conjuncts(clause) -> List:
    if clause is None:
        return []
    if isinstance(clause, Grouping):
        return _conjuncts(clause.element)
    if isinstance(clause, BooleanClauseList) and clause.operator is operators.and_:
        out = []
        for c in clause.clauses:
            out.extend(_conjuncts(c))
        return out
    return [clause]


def _touched_scoped_tables(statement, mappers: Iterable = ()) -> Set[str]:
    tables: Set[str] = set()
    candidates = list(visitors.iterate(statement))
    target = getattr(statement, "table", None)
    if target is not None:
        candidates.append(target)
    for element in candidates:
        if isinstance(element, Table) and is_scoped_table(element):
            tables.add(element.name)
        elif isinstance(element, ColumnClause):
            owner = getattr(element, "table", None)
            if isinstance(owner, Table) and is_scoped_table(owner):
                tables.add(owner.name)
    for mapper in mappers:
        if is_scoped_table(mapper.local_table):
            tables.add(mapper.local_table.name)
    return tables


def _tenant_column_table(element) -> Optional[str]:
    if not isinstance(element, ColumnClause) or element.key != TENANT_COLUMN:
        return None
    if not element.info.get("tenant_key"):
        return None
    owner = getattr(element, "table", None)
    return getattr(owner, "name", None)


def _tenant_predicates(whereclause) -> dict:
    """Map scoped table name -> set of store ids named by top-level predicates."""
    found: dict = {}
    for clause in _conjuncts(whereclause):
        if not isinstance(clause, BinaryExpression):
            continue
        for column, other in ((clause.left, clause.right), (clause.right, clause.left)):
            table_name = _tenant_column_table(column)
            if table_name is None:
                continue
            if clause.operator is not operators.eq or not isinstance(other, BindParameter):
                raise _NonEqualityPredicate(table_name)
            found.setdefault(table_name, set()).add(other.effective_value)
    return found


class _NonEqualityPredicate(Exception):
    def __init__(self, table_name: str):
        self.table_name = table_name


def check_statement(session: Session, statement, mappers: Iterable = ()) -> None:
    """Validate one statement against the session's marker. Raises PolicyViolation."""
    if session.info.get(REJECTED_KEY):
        raise PolicyViolation("session previously rejected", store_id=current_marker(session))

    if isinstance(statement, TextClause):
        named = _scoped_names_in_sql(statement.text)
        if named:
            _reject(session, f"raw SQL against scoped table(s) {sorted(named)}")
        return

    tables = _touched_scoped_tables(statement, mappers)
    if not tables:
        return

    marker = current_marker(session)
    if marker is None:
        _reject(session, f"unscoped access to {sorted(tables)}: no tenant marker bound")

    if getattr(statement, "is_insert", False):
        _reject(session, f"bulk INSERT into {sorted(tables)} bypasses flush checks", marker)

    try:
        predicates = _tenant_predicates(getattr(statement, "whereclause", None))
    except _NonEqualityPredicate as exc:
        _reject(session, f"non-equality tenant predicate on {exc.table_name}", marker)

    for table_name in sorted(tables):
        values = predicates.get(table_name)
        if not values:
            _reject(session, f"missing tenant predicate on {table_name}", marker)
        if any(_as_store_id(v) != marker for v in values):
            _reject(
                session,
                f"tenant predicate on {table_name} names {sorted(values, key=str)}, marker is {marker}",
                marker,
            )


def _as_store_id(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _scoped_names_in_sql(sql: str) -> Set[str]:
    return {
        name for name in _scoped_table_names
        if re.search(rf"\b{re.escape(name)}\b", sql, re.IGNORECASE)
    }


# ── Session listeners ───────────────────────────────────────

@event.listens_for(ScopedSession, "do_orm_execute")
def _check_orm_execute(orm_execute_state: ORMExecuteState) -> None:
    check_statement(
        orm_execute_state.session,
        orm_execute_state.statement,
        orm_execute_state.all_mappers,
    )


@event.listens_for(ScopedSession, "before_flush")
def _check_flush(session: Session, flush_context, instances) -> None:
    if session.info.get(REJECTED_KEY):
        raise PolicyViolation("session previously rejected", store_id=current_marker(session))

    pending = [
        obj for obj in (*session.new, *session.dirty, *session.deleted)
        if is_scoped_instance(obj)
    ]
    if not pending:
        return

    marker = current_marker(session)
    if marker is None:
        _reject(session, "flush of scoped rows without a tenant marker", check="flush")

    for obj in pending:
        state = inspect(obj)
        history = state.attrs[TENANT_COLUMN].history
        if state.persistent and history.has_changes():
            _reject(
                session, f"store_id changed on {type(obj).__name__} {state.identity}", marker,
                check="flush",
            )
        if _as_store_id(getattr(obj, TENANT_COLUMN)) != marker:
            _reject(
                session,
                f"{type(obj).__name__} for store {getattr(obj, TENANT_COLUMN)} "
                f"flushed under marker {marker}",
                marker,
                check="flush",
            )


@event.listens_for(ScopedSession, "loaded_as_persistent")
def _check_loaded(session: Session, instance) -> None:
    if not is_scoped_instance(instance):
        return
    marker = current_marker(session)
    if marker is None or _as_store_id(getattr(instance, TENANT_COLUMN)) != marker:
        _reject(
            session,
            f"{type(instance).__name__} row of store {getattr(instance, TENANT_COLUMN)} "
            f"loaded under marker {marker}",
            marker,
            check="load",
        )


# ── Row-level security (PostgreSQL) ─────────────────────────

def rls_policy_ddl(table_name: str) -> List[str]:
    """Restrictive row-level security statements for one scoped table."""
    current = f"NULLIF(current_setting('{PG_SETTING}', true), '')::integer"
    return [
        f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY",
        (
            f"CREATE POLICY {table_name}_store_isolation ON {table_name} "
            f"USING ({TENANT_COLUMN} = {current}) "
            f"WITH CHECK ({TENANT_COLUMN} = {current})"
        ),
    ]


def register_metadata(metadata: MetaData) -> Set[str]:
    """
    Record the scoped tables of `metadata` and attach their RLS DDL.

    Returns the names of the scoped tables.
    """
    names = set()
    for table in metadata.sorted_tables:
        if not is_scoped_table(table):
            continue
        names.add(table.name)
        for statement in rls_policy_ddl(table.name):
            event.listen(
                table, "after_create", DDL(statement).execute_if(dialect="postgresql")
            )
    _scoped_table_names.update(names)
    return names
