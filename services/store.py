"""Record store wrapper over a SQLAlchemy session.

Services never talk to ``db.session`` directly; they get a ``RecordStore``
per model bound to whatever session they were constructed with, which keeps
the persistence layer swappable in tests.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from models import db

ModelT = TypeVar('ModelT')


@dataclass
class Page(Generic[ModelT]):
    items: List[ModelT]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit > 0 else 0

    def to_dict(self, serialize=None) -> dict:
        serialize = serialize or (lambda item: item.to_dict())
        return {
            'items': [serialize(item) for item in self.items],
            'page': self.page,
            'limit': self.limit,
            'total': self.total,
            'total_pages': self.total_pages,
        }


class RecordStore(Generic[ModelT]):
    def __init__(self, model: Type[ModelT], session: Optional[Session] = None):
        self.model = model
        self.session = session if session is not None else db.session

    def _ordered(self, stmt, order_by):
        if order_by is None:
            order_by = (self.model.id,)
        elif not isinstance(order_by, (list, tuple)):
            order_by = (order_by,)
        return stmt.order_by(*order_by)

    def get(self, record_id: int) -> Optional[ModelT]:
        return self.session.get(self.model, record_id)

    def find(self, *criteria, page: int = 1, limit: int = 10, order_by: Any = None) -> Page[ModelT]:
        page = max(page, 1)
        limit = max(limit, 1)
        stmt = self._ordered(select(self.model).where(*criteria), order_by)
        items = self.session.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
        return Page(items=list(items), page=page, limit=limit, total=self.count(*criteria))

    def find_all(self, *criteria, order_by: Any = None) -> List[ModelT]:
        stmt = self._ordered(select(self.model).where(*criteria), order_by)
        return list(self.session.scalars(stmt).all())

    def find_one(self, *criteria) -> Optional[ModelT]:
        return self.session.scalars(select(self.model).where(*criteria).limit(1)).first()

    def count(self, *criteria) -> int:
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        return self.session.scalar(stmt) or 0

    def add(self, record: ModelT) -> ModelT:
        self.session.add(record)
        self.session.flush()
        return record

    def update_statement(self, *criteria, **values):
        """Build a conditional UPDATE whose SET clauses follow keyword order.

        MySQL evaluates SET assignments left to right, so a value computed
        from another column must be listed before that column is assigned.
        """
        assignments = [(getattr(self.model, key), value) for key, value in values.items()]
        return (
            update(self.model)
            .where(*criteria)
            .ordered_values(*assignments)
            .execution_options(synchronize_session=False)
        )

    def update(self, *criteria, **values) -> int:
        """Conditional in-place update; returns the number of rows matched."""
        return self.session.execute(self.update_statement(*criteria, **values)).rowcount

    def delete_by_id(self, record_id: int) -> int:
        stmt = delete(self.model).where(self.model.id == record_id).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount
