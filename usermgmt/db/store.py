"""SQLAlchemy-backed store behind the predicate query interface.

A store wraps one model. Predicates produced by ``usermgmt.core.filters``
reference store field names: every mapped column by its attribute name,
plus a few computed fields (e.g. ``role_name`` on users) declared per
resource below. Values are always handed to SQLAlchemy as bound
parameters; nothing is formatted into SQL text.
"""

import enum
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from usermgmt.core.exceptions import InternalError, ResourceConflictError
from usermgmt.core.filters import AllOf, AnyOf, Node, Op, Predicate
from usermgmt.core.query_params import ASC, SortSpec
from usermgmt.models import LogEntry, Notification, Role, User, UserProfile

logger = logging.getLogger("user_management.store")


class Increment:
    """Marks an update value as ``column = column + amount``."""

    def __init__(self, amount: int = 1):
        self.amount = amount

    def __repr__(self) -> str:
        return f"Increment({self.amount})"


class SqlStore:
    """find_many / count / create / update / delete over one model."""

    def __init__(self, db: Session, model, fields: Optional[dict] = None):
        self.db = db
        self.model = model
        self.fields = {
            column.key: getattr(model, column.key) for column in model.__mapper__.column_attrs
        }
        self.fields.update(fields or {})

    # ── Translation ──────────────────────────────────────────────

    def column(self, name: str):
        try:
            return self.fields[name]
        except KeyError:
            raise ValueError(f"Unknown field '{name}' for {self.model.__name__}") from None

    def expression(self, node: Node):
        if isinstance(node, AnyOf):
            return or_(*(self.expression(item) for item in node.items))
        if isinstance(node, AllOf):
            return and_(*(self.expression(item) for item in node.items))
        if not isinstance(node, Predicate):
            raise TypeError(f"Unsupported predicate node: {node!r}")

        col = self.column(node.field)
        value = node.value
        op = Op(node.op)
        if op == Op.EQ:
            return col == value
        if op == Op.NE:
            return col != value
        if op == Op.IN:
            return col.in_(list(value))
        if op == Op.ICONTAINS:
            return col.icontains(value, autoescape=True)
        if op == Op.ISTARTSWITH:
            return col.istartswith(value, autoescape=True)
        if op == Op.IENDSWITH:
            return col.iendswith(value, autoescape=True)
        if op == Op.GT:
            return col > value
        if op == Op.GTE:
            return col >= value
        if op == Op.LT:
            return col < value
        if op == Op.LTE:
            return col <= value
        if op == Op.IS_NULL:
            return col.is_(None)
        return col.is_not(None)

    def where(self, predicates: Iterable[Node]) -> list:
        return [self.expression(node) for node in predicates]

    def _values(self, values: dict) -> dict:
        resolved = {}
        for key, value in values.items():
            if isinstance(value, Increment):
                resolved[key] = self.column(key) + value.amount
            else:
                resolved[key] = value
        return resolved

    @contextmanager
    def translate_errors(self) -> Iterator[None]:
        """Wrap backend failures into the service error taxonomy."""
        try:
            yield
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("Integrity violation on %s: %s", self.model.__tablename__, exc.orig)
            raise ResourceConflictError("Resource already exists or conflicts with existing data") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store failure on %s: %s", self.model.__tablename__, exc)
            raise InternalError(cause=exc) from exc

    # ── Reads ───────────────────────────────────────────────────

    def find_many(
        self,
        predicates: Sequence[Node] = (),
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list:
        with self.translate_errors():
            query = self.db.query(self.model).filter(*self.where(predicates))
            if sort is not None:
                col = self.column(sort.field)
                query = query.order_by(col.asc() if sort.direction == ASC else col.desc())
            query = query.order_by(self.model.id.asc())
            if offset:
                query = query.offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

    def find_one(self, predicates: Sequence[Node]):
        rows = self.find_many(predicates, limit=1)
        return rows[0] if rows else None

    def count(self, predicates: Sequence[Node] = ()) -> int:
        with self.translate_errors():
            return self.db.query(func.count(self.model.id)).filter(*self.where(predicates)).scalar() or 0

    def get(self, entity_id: int):
        with self.translate_errors():
            return self.db.get(self.model, entity_id)

    def group_counts(self, field: str, predicates: Sequence[Node] = ()) -> dict:
        """Row counts grouped by one field."""
        col = self.column(field)
        with self.translate_errors():
            rows = (
                self.db.query(col, func.count(self.model.id))
                .filter(*self.where(predicates))
                .group_by(col)
                .all()
            )
        counts = {}
        for key, total in rows:
            if isinstance(key, enum.Enum):
                key = key.value
            counts[key] = total
        return counts

    def average(self, field: str, predicates: Sequence[Node] = ()) -> Optional[float]:
        with self.translate_errors():
            value = (
                self.db.query(func.avg(self.column(field)))
                .filter(*self.where(predicates))
                .scalar()
            )
        return float(value) if value is not None else None

    # ── Writes ──────────────────────────────────────────────────

    def create(self, values: dict):
        with self.translate_errors():
            entity = self.model(**values)
            self.db.add(entity)
            self.db.commit()
            self.db.refresh(entity)
            return entity

    def update(self, entity, values: dict):
        with self.translate_errors():
            for key, value in values.items():
                setattr(entity, key, value)
            self.db.commit()
            self.db.refresh(entity)
            return entity

    def delete(self, entity) -> None:
        with self.translate_errors():
            self.db.delete(entity)
            self.db.commit()

    def update_where(self, predicates: Sequence[Node], values: dict) -> int:
        """Single conditional UPDATE; returns the number of rows changed."""
        with self.translate_errors():
            changed = (
                self.db.query(self.model)
                .filter(*self.where(predicates))
                .update(self._values(values), synchronize_session=False)
            )
            self.db.commit()
            return changed

    def delete_where(self, predicates: Sequence[Node]) -> int:
        with self.translate_errors():
            removed = (
                self.db.query(self.model)
                .filter(*self.where(predicates))
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return removed


# ── Per-resource stores ─────────────────────────────────────────────

def user_store(db: Session) -> SqlStore:
    return SqlStore(db, User, {
        "role_name": select(Role.name)
        .where(Role.id == User.role_id)
        .correlate(User)
        .scalar_subquery(),
        "profile_id": select(UserProfile.id)
        .where(UserProfile.user_id == User.id)
        .correlate(User)
        .scalar_subquery(),
    })


def profile_store(db: Session) -> SqlStore:
    return SqlStore(db, UserProfile, {
        "role_name": select(Role.name)
        .join(User, User.role_id == Role.id)
        .where(User.id == UserProfile.user_id)
        .correlate(UserProfile)
        .scalar_subquery(),
        "user_full_name": select(User.full_name)
        .where(User.id == UserProfile.user_id)
        .correlate(UserProfile)
        .scalar_subquery(),
        "user_email": select(User.email)
        .where(User.id == UserProfile.user_id)
        .correlate(UserProfile)
        .scalar_subquery(),
    })


def notification_store(db: Session) -> SqlStore:
    return SqlStore(db, Notification)


def log_store(db: Session) -> SqlStore:
    return SqlStore(db, LogEntry)
