"""
Authorized reads and writes against the entity tables.

All action code goes through these helpers so that every row operation is
checked against `policies.POLICIES`, domain constraints are validated with the
offending field named, and the change-notification fan-out sees every committed
mutation. Passing `ctx=None` marks a trusted server-side write (login bootstrap,
fan-out, maintenance sweeps) that bypasses row policies but not validation.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

import fanout
from policies import PolicyContext, filter_visible, is_allowed
from utils import ApiError, iso_utc_now


def _label(row_or_model: Any) -> str:
    name = getattr(row_or_model, "__name__", "") or type(row_or_model).__name__
    return name or "Row"


def snapshot(row: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for c in sa_inspect(type(row)).column_attrs:
        value = getattr(row, c.key)
        out[c.key] = list(value) if isinstance(value, list) else value
    return out


def validate_row(db, row: Any) -> None:
    """Enum, range, not-null and foreign-key checks, reported per field."""
    model = type(row)
    enums: dict[str, tuple] = getattr(model, "_enums", {}) or {}
    ranges: dict[str, tuple[int, int]] = getattr(model, "_ranges", {}) or {}

    for col in model.__table__.columns:
        key = col.key
        value = getattr(row, key, None)

        if value is None:
            if not col.nullable and col.default is None and not col.primary_key:
                raise ApiError("CONSTRAINT_VIOLATION", f"{key} is required", field=key)
            continue

        if key in enums and value not in enums[key]:
            raise ApiError("CONSTRAINT_VIOLATION", f"{key} must be one of: {', '.join(enums[key])}", field=key)

        if key in ranges:
            lo, hi = ranges[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < lo or value > hi:
                raise ApiError("CONSTRAINT_VIOLATION", f"{key} must be an integer between {lo} and {hi}", field=key)

        for fk in col.foreign_keys:
            target = fk.column
            found = db.execute(select(target).where(target == value).limit(1)).first()
            if found is None:
                raise ApiError("CONSTRAINT_VIOLATION", f"{key} references a missing {target.table.name} row", field=key)


def _flush(db) -> None:
    try:
        db.flush()
    except IntegrityError as e:
        raise ApiError("CONSTRAINT_VIOLATION", "Constraint violation") from e


def get_visible(db, ctx: Optional[PolicyContext], model: Any, row_id: Any) -> Any:
    rid = str(row_id or "").strip()
    if not rid:
        raise ApiError("BAD_REQUEST", f"Missing {_label(model)} id")
    row = db.get(model, rid)
    if row is None or (ctx is not None and not is_allowed(ctx, "select", row)):
        raise ApiError("NOT_FOUND", f"{_label(model)} not found")
    return row


def list_visible(db, ctx: Optional[PolicyContext], stmt) -> list[Any]:
    rows = db.execute(stmt).scalars().all()
    if ctx is None:
        return list(rows)
    return filter_visible(ctx, rows)


def insert_row(db, ctx: Optional[PolicyContext], row: Any) -> Any:
    if ctx is not None and not is_allowed(ctx, "insert", row):
        raise ApiError("FORBIDDEN", "Not permitted")
    validate_row(db, row)
    db.add(row)
    _flush(db)
    fanout.emit(db, fanout.ChangeEvent(table=row.__tablename__, kind="insert", row=row))
    return row


def update_row(db, ctx: Optional[PolicyContext], row: Any, changes: dict[str, Any]) -> Any:
    if not changes:
        return row
    columns = {c.key for c in sa_inspect(type(row)).column_attrs}
    unknown = set(changes) - columns
    if unknown:
        raise ApiError("BAD_REQUEST", f"Unknown field: {sorted(unknown)[0]}")

    if ctx is not None:
        if not is_allowed(ctx, "select", row):
            raise ApiError("NOT_FOUND", f"{_label(row)} not found")
        if not is_allowed(ctx, "update", row, changes):
            raise ApiError("FORBIDDEN", "Not permitted")

    old = snapshot(row)
    for key, value in changes.items():
        setattr(row, key, value)
    if "updated_at" in columns and "updated_at" not in changes:
        row.updated_at = iso_utc_now()
    validate_row(db, row)
    _flush(db)
    fanout.emit(
        db,
        fanout.ChangeEvent(table=row.__tablename__, kind="update", row=row, old=old, columns=frozenset(changes)),
    )
    return row


def delete_row(db, ctx: Optional[PolicyContext], row: Any) -> None:
    if ctx is not None:
        if not is_allowed(ctx, "select", row):
            raise ApiError("NOT_FOUND", f"{_label(row)} not found")
        if not is_allowed(ctx, "delete", row):
            raise ApiError("FORBIDDEN", "Not permitted")
    old = snapshot(row)
    db.delete(row)
    _flush(db)
    fanout.emit(db, fanout.ChangeEvent(table=row.__tablename__, kind="delete", row=row, old=old))
