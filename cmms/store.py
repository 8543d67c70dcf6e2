"""
cmms/store.py -- SQLAlchemy-backed persistence layer for EquipCare.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in cmms/models.py
remain the authoritative domain representation. SQLAlchemy provides a
database-agnostic abstraction: swapping SQLite for PostgreSQL is a connection
string change, not a rewrite.

Pattern: Repository + Data Mapper. CMMSStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers (they translate
raw DB rows into domain dataclasses). Engine code never touches SQL directly.

Invariants enforced here with conditional writes:

  One active ScheduledWork per (asset, kind):
      create_work_if_absent() inserts with INSERT ... SELECT ... WHERE NOT
      EXISTS (active row for the pair). The active_key column ("<asset>:<kind>"
      while active, NULL once terminal) carries a UNIQUE constraint as a second
      line of defense for databases where the NOT EXISTS check can interleave.

  Escalation level only moves forward, one level at a time:
      advance_escalation() runs UPDATE ... WHERE escalation_level = expected
      and inserts the level's notifications in the same transaction. A caller
      that loses the race sees rowcount 0 and writes nothing.

Failures of the database itself (OperationalError, InterfaceError) surface as
core.errors.StoreUnavailable.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CMMSStore()                               # SQLite default
    store = CMMSStore("postgresql://user:pw@host/db") # PostgreSQL
    asset_id = store.create_asset(asset)
    work = store.create_work_if_absent(ScheduledWork(...))
    store.close()
"""

import functools
import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    event,
    func,
    literal,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from cmms.models import Asset, EscalationRule, MaintenancePolicy, Notification, ScheduledWork, User, WorkEvent
from core.config import get_settings
from core.errors import StoreUnavailable

_ACTIVE_STATUSES = ("Scheduled", "InProgress", "Overdue")
_TERMINAL_STATUSES = ("Completed", "Cancelled")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_assets = Table(
    "assets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("department", String(255), nullable=False, server_default=""),
    Column("model", String(255)),
    Column("manufacturer", String(255)),
    Column("purchase_date", String(10)),  # YYYY-MM-DD
    Column("purchase_cost", Float),
    Column("total_service_cost", Float, nullable=False, server_default="0"),
    Column("total_downtime_hours", Float, nullable=False, server_default="0"),
    Column("utilization_pct", Float, nullable=False, server_default="0"),
    Column("lifecycle_state", String(30), nullable=False, server_default="Active"),
    Column("contact_user_id", Integer),
    Column("created_at", String(32), nullable=False),
)

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255)),
    Column("role", String(50), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_policies = Table(
    "maintenance_policies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset_id", Integer, nullable=False),
    Column("kind", String(20), nullable=False),
    Column("frequency_count", Integer, nullable=False),
    Column("frequency_unit", String(10), nullable=False),
    Column("vendor_id", Integer),
    Column("engineer_id", Integer),
    Column("last_performed", String(10)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_work = Table(
    "scheduled_work",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset_id", Integer, nullable=False),
    Column("kind", String(20), nullable=False),
    Column("policy_id", Integer),
    Column("scheduled_date", String(10), nullable=False),
    Column("status", String(20), nullable=False, server_default="Scheduled"),
    Column("escalation_level", Integer, nullable=False, server_default="0"),
    Column("vendor_id", Integer),
    Column("assignee_id", Integer),
    Column("completed_date", String(10)),
    Column("active_key", String(64)),  # "<asset_id>:<kind>" while active, NULL once terminal
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("active_key", name="uq_work_active_key"),
)

_work_events = Table(
    "work_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("work_id", Integer, nullable=False),
    Column("status", String(20), nullable=False),
    Column("escalation_level", Integer, nullable=False),
    Column("note", Text),
    Column("recorded_at", String(32), nullable=False),
)

_rules = Table(
    "escalation_rules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(30), nullable=False),
    Column("level", Integer, nullable=False),
    Column("threshold_kind", String(20), nullable=False, server_default="days_overdue"),
    Column("threshold", Float, nullable=False),
    Column("targets", Text, nullable=False),  # JSON array of "user:<id>" / "role:<name>"
    Column("notify_email", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("type", String(20), nullable=False),
    Column("title", String(255), nullable=False),
    Column("message", Text),
    Column("entity_type", String(30)),
    Column("entity_id", Integer),
    Column("is_read", Integer, nullable=False, server_default="0"),
    Column("email_recipients", Text),  # JSON array
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _active_key(asset_id: int, kind: str) -> str:
    return f"{asset_id}:{kind}"


def _guard(method):
    """Translate database connectivity failures into StoreUnavailable.

    IntegrityError is not translated: it signals a constraint decision the
    calling method handles itself.
    """

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(f"{method.__name__}: {e.orig if e.orig is not None else e}") from e

    return wrapper


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CMMSStore:
    """Repository for assets, users, policies, scheduled work, rules and notifications.

    Opened once at process start and passed explicitly into every engine
    component; close() disposes the connection pool at shutdown.
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # check_same_thread=False: the API serves requests from a thread
            # pool. timeout: writers wait on a busy database instead of
            # failing immediately.
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 30
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        try:
            metadata.create_all(self.engine)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(f"Cannot open store: {e.orig if e.orig is not None else e}") from e

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(literal(1)))
        except (OperationalError, InterfaceError):
            return False
        return True

    # ------------------------------------------------------------------
    # Assets (asset directory)
    # ------------------------------------------------------------------

    @_guard
    def create_asset(self, asset: Asset) -> int:
        """Insert a new asset and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _assets.insert().values(
                    name=asset.name,
                    department=asset.department,
                    model=asset.model,
                    manufacturer=asset.manufacturer,
                    purchase_date=asset.purchase_date,
                    purchase_cost=asset.purchase_cost,
                    total_service_cost=asset.total_service_cost,
                    total_downtime_hours=asset.total_downtime_hours,
                    utilization_pct=asset.utilization_pct,
                    lifecycle_state=asset.lifecycle_state,
                    contact_user_id=asset.contact_user_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    @_guard
    def get_asset(self, asset_id: int) -> Optional[Asset]:
        """Fetch a single asset by ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_assets.select().where(_assets.c.id == asset_id)).fetchone()
        return _row_to_asset(row) if row is not None else None

    @_guard
    def list_assets(self, asset_ids: Optional[list[int]] = None, include_disposed: bool = False) -> list[Asset]:
        """Return assets ordered by id, optionally restricted to asset_ids."""
        stmt = _assets.select().order_by(_assets.c.id)
        if asset_ids is not None:
            stmt = stmt.where(_assets.c.id.in_(asset_ids))
        if not include_disposed:
            stmt = stmt.where(_assets.c.lifecycle_state != "Disposed")
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_asset(r) for r in rows]

    # ------------------------------------------------------------------
    # Users (role directory)
    # ------------------------------------------------------------------

    @_guard
    def create_user(self, user: User) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    @_guard
    def get_users(self, user_ids: list[int]) -> list[User]:
        """Return the active users among user_ids, ordered by id."""
        if not user_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.id.in_(user_ids) & (_users.c.is_active == 1))
                .order_by(_users.c.id)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    @_guard
    def users_with_role(self, role: str) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where((_users.c.role == role) & (_users.c.is_active == 1)).order_by(_users.c.id)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Maintenance policies
    # ------------------------------------------------------------------

    @_guard
    def create_policy(self, policy: MaintenancePolicy) -> int:
        """Insert a policy and return its ID. created_at defaults to now."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _policies.insert().values(
                    asset_id=policy.asset_id,
                    kind=policy.kind,
                    frequency_count=policy.frequency_count,
                    frequency_unit=policy.frequency_unit,
                    vendor_id=policy.vendor_id,
                    engineer_id=policy.engineer_id,
                    last_performed=policy.last_performed,
                    is_active=1 if policy.is_active else 0,
                    created_at=policy.created_at or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    @_guard
    def update_policy(self, policy_id: int, **fields) -> bool:
        """Update mutable policy fields (frequency, assignment, is_active).

        Returns True if a row was updated, False if policy_id was not found.
        """
        allowed = {"frequency_count", "frequency_unit", "vendor_id", "engineer_id", "is_active", "last_performed"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown policy fields: {', '.join(sorted(unknown))}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_policies.update().where(_policies.c.id == policy_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    @_guard
    def get_policy(self, policy_id: int) -> Optional[MaintenancePolicy]:
        with self.engine.connect() as conn:
            row = conn.execute(_policies.select().where(_policies.c.id == policy_id)).fetchone()
        return _row_to_policy(row) if row is not None else None

    @_guard
    def get_policies(self, asset_id: int, active_only: bool = True) -> list[MaintenancePolicy]:
        """Return an asset's policies, PM before calibration."""
        stmt = _policies.select().where(_policies.c.asset_id == asset_id)
        if active_only:
            stmt = stmt.where(_policies.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_policies.c.kind.desc(), _policies.c.id)).fetchall()
        return [_row_to_policy(r) for r in rows]

    @_guard
    def record_performed(self, policy_id: int, performed_on: str) -> bool:
        """Advance last_performed to performed_on unless a later date is already recorded."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _policies.update()
                .where(
                    (_policies.c.id == policy_id)
                    & (_policies.c.last_performed.is_(None) | (_policies.c.last_performed < performed_on))
                )
                .values(last_performed=performed_on)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Scheduled work
    # ------------------------------------------------------------------

    @_guard
    def create_work_if_absent(self, work: ScheduledWork, note: Optional[str] = None) -> Optional[ScheduledWork]:
        """Insert work unless an active record exists for (asset_id, kind).

        Returns the created record, or None when an active record already
        exists (including one created concurrently by another caller).
        The check and the insert are one statement; see the module docstring.
        """
        now = _now_iso()
        key = _active_key(work.asset_id, work.kind)
        values = {
            "asset_id": work.asset_id,
            "kind": work.kind,
            "policy_id": work.policy_id,
            "scheduled_date": work.scheduled_date,
            "status": "Scheduled",
            "escalation_level": 0,
            "vendor_id": work.vendor_id,
            "assignee_id": work.assignee_id,
            "active_key": key,
            "created_at": now,
            "updated_at": now,
        }
        already_active = (
            select(_work.c.id)
            .where(
                and_(
                    _work.c.asset_id == work.asset_id,
                    _work.c.kind == work.kind,
                    _work.c.status.in_(_ACTIVE_STATUSES),
                )
            )
            .correlate(None)
            .exists()
        )
        source = select(*[literal(v, type_=_work.c[k].type).label(k) for k, v in values.items()]).where(
            ~already_active
        )
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_work.insert().from_select(list(values), source))
                if result.rowcount != 1:
                    conn.rollback()
                    return None
                row = conn.execute(_work.select().where(_work.c.active_key == key)).fetchone()
                conn.execute(
                    _work_events.insert().values(
                        work_id=row.id,
                        status="Scheduled",
                        escalation_level=0,
                        note=note,
                        recorded_at=now,
                    )
                )
                conn.commit()
        except IntegrityError:
            # Lost the race on uq_work_active_key.
            return None
        return _row_to_work(row)

    @_guard
    def get_work(self, work_id: int) -> Optional[ScheduledWork]:
        with self.engine.connect() as conn:
            row = conn.execute(_work.select().where(_work.c.id == work_id)).fetchone()
        return _row_to_work(row) if row is not None else None

    @_guard
    def get_active_work(self, asset_id: int, kind: str) -> Optional[ScheduledWork]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _work.select().where(
                    (_work.c.asset_id == asset_id) & (_work.c.kind == kind) & (_work.c.status.in_(_ACTIVE_STATUSES))
                )
            ).fetchone()
        return _row_to_work(row) if row is not None else None

    @_guard
    def list_active_work(
        self,
        due_before: Optional[str] = None,
        due_from: Optional[str] = None,
        due_until: Optional[str] = None,
        assignee_id: Optional[int] = None,
    ) -> list[ScheduledWork]:
        """Return active work ordered by scheduled date.

        due_before is exclusive; due_from / due_until are inclusive bounds.
        """
        stmt = _work.select().where(_work.c.status.in_(_ACTIVE_STATUSES))
        if due_before is not None:
            stmt = stmt.where(_work.c.scheduled_date < due_before)
        if due_from is not None:
            stmt = stmt.where(_work.c.scheduled_date >= due_from)
        if due_until is not None:
            stmt = stmt.where(_work.c.scheduled_date <= due_until)
        if assignee_id is not None:
            stmt = stmt.where(_work.c.assignee_id == assignee_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_work.c.scheduled_date, _work.c.id)).fetchall()
        return [_row_to_work(r) for r in rows]

    @_guard
    def transition_work(
        self,
        work_id: int,
        to_status: str,
        from_statuses: tuple = _ACTIVE_STATUSES,
        note: Optional[str] = None,
        **fields,
    ) -> Optional[ScheduledWork]:
        """Move work to to_status if its current status is in from_statuses.

        Extra fields (scheduled_date, completed_date) are written in the same
        UPDATE. Terminal statuses release the active_key so the pair can be
        scheduled again. Returns the updated record, or None when the work does
        not exist or was not in an allowed status.
        """
        now = _now_iso()
        values = dict(fields, status=to_status, updated_at=now)
        if to_status in _TERMINAL_STATUSES:
            values["active_key"] = None
        with self.engine.connect() as conn:
            result = conn.execute(
                _work.update()
                .where((_work.c.id == work_id) & (_work.c.status.in_(from_statuses)))
                .values(**values)
            )
            if result.rowcount != 1:
                conn.rollback()
                return None
            row = conn.execute(_work.select().where(_work.c.id == work_id)).fetchone()
            conn.execute(
                _work_events.insert().values(
                    work_id=work_id,
                    status=to_status,
                    escalation_level=row.escalation_level,
                    note=note,
                    recorded_at=now,
                )
            )
            conn.commit()
        return _row_to_work(row)

    @_guard
    def advance_escalation(
        self,
        work_id: int,
        expected_level: int,
        notifications: list[Notification],
        note: Optional[str] = None,
    ) -> Optional[list[Notification]]:
        """Atomically move work from expected_level to expected_level + 1 and record notifications.

        Returns the persisted notifications (ids and timestamps assigned), or
        None if the item is no longer active or its level is no longer
        expected_level -- i.e. another run already actioned this level.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _work.update()
                .where(
                    (_work.c.id == work_id)
                    & (_work.c.escalation_level == expected_level)
                    & (_work.c.status.in_(_ACTIVE_STATUSES))
                )
                .values(escalation_level=expected_level + 1, updated_at=now)
            )
            if result.rowcount != 1:
                conn.rollback()
                return None
            status = conn.execute(select(_work.c.status).where(_work.c.id == work_id)).scalar_one()
            persisted = [_insert_notification(conn, n, now) for n in notifications]
            conn.execute(
                _work_events.insert().values(
                    work_id=work_id,
                    status=status,
                    escalation_level=expected_level + 1,
                    note=note,
                    recorded_at=now,
                )
            )
            conn.commit()
        return persisted

    @_guard
    def get_work_history(self, work_id: int) -> list[WorkEvent]:
        """Return all audit events for a ScheduledWork, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _work_events.select()
                .where(_work_events.c.work_id == work_id)
                .order_by(_work_events.c.recorded_at, _work_events.c.id)
            ).fetchall()
        return [
            WorkEvent(
                id=r.id,
                work_id=r.work_id,
                status=r.status,
                escalation_level=r.escalation_level,
                note=r.note,
                recorded_at=r.recorded_at,
            )
            for r in rows
        ]

    @_guard
    def count_active_work(self, asset_id: int, kind: str) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count())
                .select_from(_work)
                .where((_work.c.asset_id == asset_id) & (_work.c.kind == kind) & (_work.c.status.in_(_ACTIVE_STATUSES)))
            ).scalar_one()

    # ------------------------------------------------------------------
    # Escalation rules
    # ------------------------------------------------------------------

    @_guard
    def create_rule(self, rule: EscalationRule) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _rules.insert().values(
                    entity_type=rule.entity_type,
                    level=rule.level,
                    threshold_kind=rule.threshold_kind,
                    threshold=rule.threshold,
                    targets=json.dumps(rule.targets),
                    notify_email=1 if rule.notify_email else 0,
                    is_active=1 if rule.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    @_guard
    def update_rule(self, rule_id: int, **fields) -> bool:
        """Update any subset of level, threshold_kind, threshold, targets, notify_email, is_active."""
        allowed = {"level", "threshold_kind", "threshold", "targets", "notify_email", "is_active"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        if "targets" in fields:
            fields["targets"] = json.dumps(fields["targets"])
        for flag in ("notify_email", "is_active"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_rules.update().where(_rules.c.id == rule_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def deactivate_rule(self, rule_id: int) -> bool:
        return self.update_rule(rule_id, is_active=False)

    @_guard
    def get_rule(self, rule_id: int) -> Optional[EscalationRule]:
        with self.engine.connect() as conn:
            row = conn.execute(_rules.select().where(_rules.c.id == rule_id)).fetchone()
        return _row_to_rule(row) if row is not None else None

    @_guard
    def list_rules(self, entity_type: Optional[str] = None, active_only: bool = True) -> list[EscalationRule]:
        """Return rules in evaluation order: entity type, level, threshold, id."""
        stmt = _rules.select()
        if entity_type is not None:
            stmt = stmt.where(_rules.c.entity_type == entity_type)
        if active_only:
            stmt = stmt.where(_rules.c.is_active == 1)
        stmt = stmt.order_by(_rules.c.entity_type, _rules.c.level, _rules.c.threshold, _rules.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_rule(r) for r in rows]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @_guard
    def insert_notification(self, notification: Notification) -> Notification:
        """Persist a notification, returning a copy with id and created_at set."""
        with self.engine.connect() as conn:
            persisted = _insert_notification(conn, notification, _now_iso())
            conn.commit()
        return persisted

    @_guard
    def get_notification(self, notification_id: int) -> Optional[Notification]:
        with self.engine.connect() as conn:
            row = conn.execute(_notifications.select().where(_notifications.c.id == notification_id)).fetchone()
        return _row_to_notification(row) if row is not None else None

    @_guard
    def mark_read(self, notification_id: int) -> bool:
        """Set is_read on one notification. Returns False only if the id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _notifications.update().where(_notifications.c.id == notification_id).values(is_read=1)
            )
            conn.commit()
        return result.rowcount > 0

    @_guard
    def mark_all_read(self, user_id: int) -> int:
        """Mark every unread notification for user_id as read. Returns the number changed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _notifications.update()
                .where((_notifications.c.user_id == user_id) & (_notifications.c.is_read == 0))
                .values(is_read=1)
            )
            conn.commit()
        return result.rowcount

    @_guard
    def unread_count(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count())
                .select_from(_notifications)
                .where((_notifications.c.user_id == user_id) & (_notifications.c.is_read == 0))
            ).scalar_one()

    @_guard
    def list_notifications(
        self,
        user_id: int,
        offset: int = 0,
        limit: int = 20,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        """Return (page of notifications newest first, total matching)."""
        where = _notifications.c.user_id == user_id
        if unread_only:
            where = where & (_notifications.c.is_read == 0)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_notifications).where(where)).scalar_one()
            rows = conn.execute(
                _notifications.select()
                .where(where)
                .order_by(_notifications.c.created_at.desc(), _notifications.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_notification(r) for r in rows], total

    @_guard
    def notification_exists(
        self,
        type: str,
        entity_type: str,
        entity_id: int,
        title_contains: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> bool:
        """Return True if a matching notification was ever recorded (read or not)."""
        where = (
            (_notifications.c.type == type)
            & (_notifications.c.entity_type == entity_type)
            & (_notifications.c.entity_id == entity_id)
        )
        if title_contains is not None:
            where = where & _notifications.c.title.contains(title_contains, autoescape=True)
        if user_id is not None:
            where = where & (_notifications.c.user_id == user_id)
        with self.engine.connect() as conn:
            row = conn.execute(select(_notifications.c.id).where(where).limit(1)).fetchone()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _insert_notification(conn, notification: Notification, now: str) -> Notification:
    result = conn.execute(
        _notifications.insert().values(
            user_id=notification.user_id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            entity_type=notification.entity_type,
            entity_id=notification.entity_id,
            is_read=1 if notification.is_read else 0,
            email_recipients=json.dumps(notification.email_recipients),
            created_at=now,
        )
    )
    return Notification(
        id=result.inserted_primary_key[0],
        user_id=notification.user_id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        entity_type=notification.entity_type,
        entity_id=notification.entity_id,
        is_read=notification.is_read,
        email_recipients=list(notification.email_recipients),
        created_at=now,
    )


def _row_to_asset(row) -> Asset:
    return Asset(
        id=row.id,
        name=row.name,
        department=row.department or "",
        model=row.model,
        manufacturer=row.manufacturer,
        purchase_date=row.purchase_date,
        purchase_cost=row.purchase_cost,
        total_service_cost=row.total_service_cost or 0.0,
        total_downtime_hours=row.total_downtime_hours or 0.0,
        utilization_pct=row.utilization_pct or 0.0,
        lifecycle_state=row.lifecycle_state,
        contact_user_id=row.contact_user_id,
        created_at=row.created_at,
    )


def _row_to_user(row) -> User:
    return User(id=row.id, name=row.name, email=row.email, role=row.role, is_active=bool(row.is_active))


def _row_to_policy(row) -> MaintenancePolicy:
    return MaintenancePolicy(
        id=row.id,
        asset_id=row.asset_id,
        kind=row.kind,
        frequency_count=row.frequency_count,
        frequency_unit=row.frequency_unit,
        vendor_id=row.vendor_id,
        engineer_id=row.engineer_id,
        last_performed=row.last_performed,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_work(row) -> ScheduledWork:
    return ScheduledWork(
        id=row.id,
        asset_id=row.asset_id,
        kind=row.kind,
        policy_id=row.policy_id,
        scheduled_date=row.scheduled_date,
        status=row.status,
        escalation_level=row.escalation_level,
        vendor_id=row.vendor_id,
        assignee_id=row.assignee_id,
        completed_date=row.completed_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_rule(row) -> EscalationRule:
    return EscalationRule(
        id=row.id,
        entity_type=row.entity_type,
        level=row.level,
        threshold_kind=row.threshold_kind,
        threshold=row.threshold,
        targets=json.loads(row.targets) if row.targets else [],
        notify_email=bool(row.notify_email),
        is_active=bool(row.is_active),
    )


def _row_to_notification(row) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        title=row.title,
        message=row.message or "",
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        is_read=bool(row.is_read),
        email_recipients=json.loads(row.email_recipients) if row.email_recipients else [],
        created_at=row.created_at,
    )
