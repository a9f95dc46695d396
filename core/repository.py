"""
Repositories translating between table rows and domain dataclasses.

Every method opens its own short transaction. Missing rows raise
NotFoundError; driver failures surface as DatabaseError from
Database.session().
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select

from .database import Database, JobRow, OrderRow
from .exceptions import NotFoundError
from models.job import ANALYSIS_FIELDS, Job
from models.order import Order, OrderState
from logging_config import get_logger


logger = get_logger(__name__)


def _order_from_row(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        job_id=row.job_id,
        project_id=row.project_id,
        organization_id=row.organization_id,
        requester_id=row.requester_id or "",
        quantity=row.quantity,
        state=OrderState(row.state),
        created_at=row.created_at,
        requested_delivery=row.requested_delivery,
        started_at=row.started_at,
        finished_at=row.finished_at,
        note=row.note or "",
    )


def _job_from_row(row: JobRow) -> Job:
    return Job(
        id=row.id,
        source_file_id=row.source_file_id,
        storage_path=row.storage_path,
        weight_grams=row.weight_grams,
        duration_minutes=row.duration_minutes,
        material=row.material,
        printer=row.printer,
        uploaded_at=row.uploaded_at,
        note=row.note or "",
    )


class OrderRepository:
    """Read/write access to the orders table."""

    def __init__(self, database: Database):
        self._db = database

    def get(self, order_id: int) -> Order:
        with self._db.session() as session:
            row = session.get(OrderRow, order_id)
            if row is None:
                raise NotFoundError("Order", order_id)
            return _order_from_row(row)

    def list(
        self,
        states: Optional[Iterable[OrderState]] = None,
        ids: Optional[Iterable[int]] = None,
        job_id: Optional[int] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ) -> List[Order]:
        """
        Orders matching every given filter, oldest first.

        Args:
            states: Restrict to these lifecycle states
            ids: Restrict to these Order ids
            job_id: Restrict to Orders printing this Job
            created_after: Inclusive lower bound on created_at
            created_before: Exclusive upper bound on created_at
        """
        stmt = select(OrderRow)
        if states is not None:
            stmt = stmt.where(OrderRow.state.in_([s.value for s in states]))
        if ids is not None:
            stmt = stmt.where(OrderRow.id.in_(list(ids)))
        if job_id is not None:
            stmt = stmt.where(OrderRow.job_id == job_id)
        if created_after is not None:
            stmt = stmt.where(OrderRow.created_at >= created_after)
        if created_before is not None:
            stmt = stmt.where(OrderRow.created_at < created_before)
        stmt = stmt.order_by(OrderRow.created_at, OrderRow.id)

        with self._db.session() as session:
            return [_order_from_row(row) for row in session.scalars(stmt)]

    def create(self, order: Order) -> Order:
        """Insert a new Order and return it with its id assigned."""
        with self._db.session() as session:
            if session.get(JobRow, order.job_id) is None:
                raise NotFoundError("Job", order.job_id)

            row = OrderRow(
                job_id=order.job_id,
                project_id=order.project_id,
                organization_id=order.organization_id,
                requester_id=order.requester_id,
                quantity=order.quantity,
                state=order.state.value,
                requested_delivery=order.requested_delivery,
                started_at=order.started_at,
                finished_at=order.finished_at,
                note=order.note,
            )
            if order.created_at is not None:
                row.created_at = order.created_at
            session.add(row)
            session.flush()
            created = _order_from_row(row)

        logger.debug(f"Created order {created.id} for job {created.job_id}")
        return created

    def update(self, order: Order) -> Order:
        """Persist the lifecycle fields of an existing Order."""
        with self._db.session() as session:
            row = session.get(OrderRow, order.id)
            if row is None:
                raise NotFoundError("Order", order.id)

            row.state = order.state.value
            row.started_at = order.started_at
            row.finished_at = order.finished_at
            row.note = order.note
            session.flush()
            return _order_from_row(row)


class JobRepository:
    """Read/write access to the jobs table."""

    def __init__(self, database: Database):
        self._db = database

    def get(self, job_id: int) -> Job:
        with self._db.session() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise NotFoundError("Job", job_id)
            return _job_from_row(row)

    def list(self, ids: Optional[Iterable[int]] = None) -> List[Job]:
        stmt = select(JobRow)
        if ids is not None:
            stmt = stmt.where(JobRow.id.in_(list(ids)))
        stmt = stmt.order_by(JobRow.id)

        with self._db.session() as session:
            return [_job_from_row(row) for row in session.scalars(stmt)]

    def create(self, job: Job) -> Job:
        with self._db.session() as session:
            row = JobRow(
                source_file_id=job.source_file_id,
                storage_path=job.storage_path,
                weight_grams=job.weight_grams,
                duration_minutes=job.duration_minutes,
                material=job.material,
                printer=job.printer,
                note=job.note,
            )
            if job.uploaded_at is not None:
                row.uploaded_at = job.uploaded_at
            session.add(row)
            session.flush()
            return _job_from_row(row)

    def list_missing_analysis(
        self,
        fields: Iterable[str] = ANALYSIS_FIELDS,
        ids: Optional[Iterable[int]] = None,
        limit: Optional[int] = None,
    ) -> List[Job]:
        """
        Jobs with at least one of ``fields`` unset, oldest upload first.

        An empty printer string counts as unset.
        """
        conditions = []
        for name in fields:
            column = getattr(JobRow, name)
            if name in ("material", "printer"):
                conditions.append(or_(column.is_(None), column == ""))
            else:
                conditions.append(column.is_(None))

        stmt = select(JobRow).where(or_(*conditions))
        if ids is not None:
            stmt = stmt.where(JobRow.id.in_(list(ids)))
        stmt = stmt.order_by(JobRow.uploaded_at, JobRow.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._db.session() as session:
            return [_job_from_row(row) for row in session.scalars(stmt)]

    def update_analysis(self, job_id: int, values: Dict[str, Any], overwrite: bool = False) -> Job:
        """
        Store analysis values on a Job.

        Without ``overwrite`` only fields that are still unset are written,
        so manual corrections are never clobbered by a re-parse.
        """
        with self._db.session() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise NotFoundError("Job", job_id)

            for name, value in values.items():
                if name not in ANALYSIS_FIELDS or value in (None, ""):
                    continue
                if overwrite or getattr(row, name) in (None, ""):
                    setattr(row, name, value)
            session.flush()
            return _job_from_row(row)

    def null_stats(self) -> Dict[str, int]:
        """Counts of Jobs missing each analysis field."""
        with self._db.session() as session:
            total = session.scalar(select(func.count()).select_from(JobRow)) or 0
            stats = {"total": total}
            for name in ANALYSIS_FIELDS:
                column = getattr(JobRow, name)
                condition = column.is_(None)
                if name in ("material", "printer"):
                    condition = or_(condition, column == "")
                stats[f"missing_{name}"] = session.scalar(
                    select(func.count()).select_from(JobRow).where(condition)
                ) or 0
        return stats
