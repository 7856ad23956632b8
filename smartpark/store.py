"""
Entity store used by the parking services.

Services never reach for ``db.session`` themselves: they receive an
``EntityStore`` wrapping whatever session the caller owns (the request's
Flask-SQLAlchemy session in views, the same session inside an app context in
tests and Celery tasks).
"""
from contextlib import contextmanager

from sqlalchemy import delete, func, select


def _criteria(model, criteria, filters):
    clauses = list(criteria)
    clauses.extend(getattr(model, name) == value for name, value in filters.items())
    return clauses


class EntityStore:

    def __init__(self, session):
        self.session = session

    # --------------------
    # READS
    # --------------------
    def get(self, model, entity_id):
        if entity_id is None:
            return None
        return self.session.get(model, entity_id)

    def find_one(self, model, *criteria, **filters):
        stmt = select(model)
        clauses = _criteria(model, criteria, filters)
        if clauses:
            stmt = stmt.where(*clauses)
        return self.session.scalars(stmt.limit(1)).first()

    def find(self, model, *criteria, order_by=None, offset=None, limit=None, **filters):
        stmt = select(model)
        clauses = _criteria(model, criteria, filters)
        if clauses:
            stmt = stmt.where(*clauses)
        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def count(self, model, *criteria, **filters):
        stmt = select(func.count(model.id))
        clauses = _criteria(model, criteria, filters)
        if clauses:
            stmt = stmt.where(*clauses)
        return self.session.scalar(stmt) or 0

    def total(self, model, column, *criteria, **filters):
        """(row count, sum of ``column``) over matching rows."""
        stmt = select(func.count(model.id), func.coalesce(func.sum(column), 0))
        clauses = _criteria(model, criteria, filters)
        if clauses:
            stmt = stmt.where(*clauses)
        count, amount = self.session.execute(stmt).one()
        return count, amount

    def group_totals(self, model, key_column, *criteria, sum_column=None, **filters):
        """
        Rows of ``(key, count)`` or ``(key, count, sum)`` grouped by
        ``key_column``.
        """
        columns = [key_column, func.count(model.id)]
        if sum_column is not None:
            columns.append(func.coalesce(func.sum(sum_column), 0))
        stmt = select(*columns)
        clauses = _criteria(model, criteria, filters)
        if clauses:
            stmt = stmt.where(*clauses)
        return [tuple(row) for row in self.session.execute(stmt.group_by(key_column))]

    # --------------------
    # WRITES
    # --------------------
    def insert(self, entity):
        self.session.add(entity)
        self.session.flush()
        return entity

    def update(self, entity):
        self.session.add(entity)
        self.session.flush()
        return entity

    def delete(self, entity):
        self.session.delete(entity)
        self.session.flush()

    def delete_where(self, model, *criteria, **filters):
        clauses = _criteria(model, criteria, filters)
        result = self.session.execute(delete(model).where(*clauses))
        return result.rowcount

    @contextmanager
    def transaction(self):
        """Commit everything done in the block, or roll all of it back."""
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
