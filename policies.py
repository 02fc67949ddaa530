"""
Row-level access policies.

Every table has, per operation (select/insert/update/delete), a tuple of
independently evaluated predicates. A row is accessible under an operation when
ANY of its predicates returns True; an empty tuple means no end user may perform
that operation (only trusted server code, which bypasses policies, can).

Predicates have the signature ``(ctx, row, changes) -> bool``:

- ``ctx``      PolicyContext with the acting identity and a DB session used to
               follow relationship chains.
- ``row``      the stored row (update/delete/select) or the new row (insert).
- ``changes``  for updates, the column -> new value mapping being written.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select

from models import SelectionProcess
from utils import ROLE_CANDIDATE, ROLE_HR


OPERATIONS = ("select", "insert", "update", "delete")


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str

    @property
    def is_hr(self) -> bool:
        return self.role == ROLE_HR


@dataclass(frozen=True)
class PolicyContext:
    actor: Actor
    db: Any = None


Predicate = Callable[[PolicyContext, Any, Optional[dict]], bool]


def _named(label: str, fn: Predicate) -> Predicate:
    fn.__name__ = label
    fn.__qualname__ = label
    return fn


def _written_value(row: Any, changes: Optional[dict], field: str) -> Any:
    if changes and field in changes:
        return changes[field]
    return getattr(row, field, None)


def _follow(db: Any, obj: Any, rel: str) -> Any:
    nxt = getattr(obj, rel, None)
    if nxt is not None:
        return nxt
    # Transient/pending rows carry the FK but not the loaded relationship.
    prop = sa_inspect(type(obj)).relationships.get(rel)
    if prop is None or db is None:
        return None
    local_cols = list(prop.local_columns)
    if len(local_cols) != 1:
        return None
    fk_value = getattr(obj, local_cols[0].key, None)
    if fk_value is None:
        return None
    return db.get(prop.mapper.class_, fk_value)


# ---- combinators -------------------------------------------------------------


def self_owned(field: str) -> Predicate:
    """row.<field> is the actor, before and after the write."""

    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        uid = ctx.actor.user_id
        if not uid:
            return False
        if str(getattr(row, field, "") or "") != uid:
            return False
        return str(_written_value(row, changes, field) or "") == uid

    return _named(f"self_owned({field})", pred)


def role_blanket(role: str = ROLE_HR) -> Predicate:
    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        return ctx.actor.role == role

    return _named(f"role_blanket({role})", pred)


def related_owner(path: str, field: str) -> Predicate:
    """Follow relationship names in `path` (dot separated) and compare `field` on the target."""
    hops = [h for h in path.split(".") if h]

    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        uid = ctx.actor.user_id
        if not uid:
            return False
        cur = row
        for rel in hops:
            cur = _follow(ctx.db, cur, rel)
            if cur is None:
                return False
        return str(getattr(cur, field, "") or "") == uid

    return _named(f"related_owner({path}.{field})", pred)


def assigned_assessment(field: str) -> Predicate:
    """The assessment id in row.<field> is required by one of the actor's selection processes."""

    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        uid = ctx.actor.user_id
        assessment_id = str(getattr(row, field, "") or "")
        if not uid or not assessment_id or ctx.db is None:
            return False
        lists = ctx.db.execute(
            select(SelectionProcess.required_assessments).where(SelectionProcess.candidate_id == uid)
        ).scalars()
        return any(assessment_id in (ids or []) for ids in lists)

    return _named(f"assigned_assessment({field})", pred)


def monotonic_field(field: str, terminal: Any) -> Predicate:
    """The write sets `field` to `terminal` (from another value) and touches nothing else."""

    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        if not changes or field not in changes:
            return False
        for key, value in changes.items():
            if key != field and getattr(row, key, None) != value:
                return False
        return changes[field] == terminal and getattr(row, field, None) != terminal

    return _named(f"monotonic_field({field}->{terminal!r})", pred)


def status_gate(field: str, active: str, *, owner_field: str = "") -> Predicate:
    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        if str(getattr(row, field, "") or "") == active:
            return True
        return bool(owner_field) and bool(ctx.actor.user_id) and str(getattr(row, owner_field, "") or "") == ctx.actor.user_id

    return _named(f"status_gate({field}=={active})", pred)


def fields_unchanged(*fields: str) -> Predicate:
    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        for f in fields:
            if changes and f in changes and changes[f] != getattr(row, f, None):
                return False
        return True

    return _named(f"fields_unchanged({','.join(fields)})", pred)


def field_in(field: str, values: tuple) -> Predicate:
    """The value written to `field` is one of `values`."""

    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        return _written_value(row, changes, field) in values

    return _named(f"field_in({field})", pred)


def only_fields(*fields: str) -> Predicate:
    allowed = set(fields)

    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        return bool(changes) and set(changes).issubset(allowed)

    return _named(f"only_fields({','.join(fields)})", pred)


def all_of(*preds: Predicate) -> Predicate:
    def pred(ctx: PolicyContext, row: Any, changes: Optional[dict] = None) -> bool:
        return all(p(ctx, row, changes) for p in preds)

    return _named("all_of(" + ", ".join(p.__name__ for p in preds) + ")", pred)


# ---- per-table rules -----------------------------------------------------------

is_hr = role_blanket(ROLE_HR)
is_candidate = role_blanket(ROLE_CANDIDATE)

POLICIES: dict[str, dict[str, tuple[Predicate, ...]]] = {
    "profiles": {
        "select": (self_owned("id"), is_hr),
        "insert": (),
        "update": (all_of(self_owned("id"), fields_unchanged("role")),),
        "delete": (),
    },
    "work_experiences": {
        "select": (self_owned("profile_id"), is_hr),
        "insert": (self_owned("profile_id"),),
        "update": (self_owned("profile_id"),),
        "delete": (self_owned("profile_id"),),
    },
    "job_offers": {
        "select": (is_hr, status_gate("status", "open", owner_field="created_by")),
        "insert": (all_of(is_hr, self_owned("created_by")),),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "applications": {
        "select": (self_owned("user_id"), is_hr),
        "insert": (all_of(is_candidate, self_owned("user_id"), field_in("status", ("pending",))), is_hr),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "selection_processes": {
        "select": (is_hr, self_owned("candidate_id")),
        "insert": (is_hr,),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "process_stages": {
        "select": (is_hr, related_owner("process", "candidate_id")),
        "insert": (is_hr,),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "candidate_evaluations": {
        "select": (is_hr, related_owner("stage.process", "candidate_id")),
        "insert": (all_of(is_hr, self_owned("evaluator_id")),),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "interviews": {
        "select": (is_hr, related_owner("process", "candidate_id")),
        "insert": (is_hr,),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "evaluation_templates": {op: (is_hr,) for op in OPERATIONS},
    "evaluation_criteria": {op: (is_hr,) for op in OPERATIONS},
    "skill_assessments": {
        "select": (is_hr, assigned_assessment("id")),
        "insert": (is_hr,),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "assessment_questions": {
        "select": (is_hr, assigned_assessment("assessment_id")),
        "insert": (is_hr,),
        "update": (is_hr,),
        "delete": (is_hr,),
    },
    "assessment_results": {
        "select": (self_owned("candidate_id"), is_hr),
        "insert": (
            all_of(self_owned("candidate_id"), assigned_assessment("assessment_id"), field_in("status", ("in_progress",))),
        ),
        "update": (all_of(self_owned("candidate_id"), fields_unchanged("assessment_id", "process_id", "start_time")),),
        "delete": (self_owned("candidate_id"),),
    },
    "documents": {
        "select": (self_owned("user_id"), is_hr),
        "insert": (all_of(self_owned("user_id"), field_in("status", ("pending",))),),
        "update": (
            all_of(self_owned("user_id"), fields_unchanged("status")),
            # Owners may only send a document back to review.
            all_of(self_owned("user_id"), field_in("status", ("pending",))),
            all_of(is_hr, only_fields("status")),
        ),
        "delete": (self_owned("user_id"),),
    },
    "document_versions": {
        "select": (related_owner("document", "user_id"), is_hr),
        "insert": (related_owner("document", "user_id"),),
        "update": (),
        "delete": (),
    },
    "document_approvals": {
        "select": (is_hr, related_owner("document", "user_id")),
        "insert": (all_of(is_hr, self_owned("approver_id")),),
        "update": (),
        "delete": (),
    },
    "messages": {
        "select": (self_owned("sender_id"), self_owned("receiver_id")),
        "insert": (self_owned("sender_id"),),
        "update": (all_of(self_owned("receiver_id"), monotonic_field("read", True)),),
        "delete": (),
    },
    "notifications": {
        "select": (self_owned("user_id"),),
        "insert": (),
        "update": (all_of(self_owned("user_id"), monotonic_field("read", True)),),
        "delete": (),
    },
    "email_notifications": {
        "select": (is_hr, self_owned("recipient_id")),
        "insert": (),
        "update": (),
        "delete": (),
    },
    "activities": {
        "select": (is_hr,),
        "insert": (),
        "update": (),
        "delete": (),
    },
}


def rules_for(table: str, operation: str) -> tuple[Predicate, ...]:
    return POLICIES.get(table, {}).get(operation, ())


def is_allowed(ctx: PolicyContext, operation: str, row: Any, changes: Optional[dict] = None) -> bool:
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}")
    table = getattr(row, "__tablename__", "")
    return any(p(ctx, row, changes) for p in rules_for(table, operation))


def filter_visible(ctx: PolicyContext, rows: Iterable[Any]) -> list[Any]:
    return [r for r in rows if is_allowed(ctx, "select", r)]
