import functools
import logging
from typing import Iterable, List

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from ..domain import (
    OfferContent,
    OfferInfo,
    utcnow,
    Order,
    OrderStatus,
    PromoInfo,
    StudentInfo,
    Transaction,
)
from ..errors import OrderNotFound, StorageFault
from ..models import (
    OfferContentRecord,
    OrderRecord,
    StudentAccess,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

KIND_COURSE = "course"
KIND_MODULE = "module"


def _storage_errors(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception("Order store failure in %s", fn.__name__)
            raise StorageFault(str(e)) from e
    return wrapper


def _to_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=order.id,
        school_id=order.school_id,
        student_id=order.student.id,
        student_name=order.student.name,
        student_email=order.student.email,
        offer_id=order.offer.id,
        offer_name=order.offer.name,
        promo_id=order.promo.id if order.promo else None,
        promo_code=order.promo.code if order.promo else None,
        amount=order.amount,
        currency=order.currency,
        status=order.status.value,
        created_at=order.created_at,
        updated_at=order.created_at,
    )


def _to_order(rec: OrderRecord, transactions: Iterable[TransactionRecord]) -> Order:
    return Order(
        id=rec.id,
        school_id=rec.school_id,
        student=StudentInfo(id=rec.student_id, name=rec.student_name, email=rec.student_email),
        offer=OfferInfo(id=rec.offer_id, name=rec.offer_name),
        promo=PromoInfo(id=rec.promo_id, code=rec.promo_code or "") if rec.promo_id else None,
        amount=rec.amount,
        currency=rec.currency,
        status=OrderStatus(rec.status),
        transactions=[
            Transaction(status=OrderStatus(t.status), created_at=t.created_at, additional_info=t.additional_info)
            for t in transactions
        ],
        created_at=rec.created_at,
        access_granted_at=rec.access_granted_at,
        notified_at=rec.notified_at,
    )


def _transaction_record(order_id: str, transaction: Transaction) -> TransactionRecord:
    return TransactionRecord(
        order_id=order_id,
        status=transaction.status.value,
        created_at=transaction.created_at,
        additional_info=transaction.additional_info,
    )


class OrderStore:
    """Orders, their audit trail and the student entitlements they unlock."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @_storage_errors
    async def create(self, order: Order) -> Order:
        async with self.session_factory() as session:
            session.add(_to_record(order))
            await session.commit()
        return order

    @_storage_errors
    async def get_by_id(self, order_id: str) -> Order:
        async with self.session_factory() as session:
            rec = await session.get(OrderRecord, order_id)
            if rec is None:
                raise OrderNotFound(order_id)
            q = (
                select(TransactionRecord)
                .where(TransactionRecord.order_id == order_id)
                .order_by(TransactionRecord.id)
            )
            res = await session.exec(q)
            return _to_order(rec, res.all())

    @_storage_errors
    async def append_transaction(self, order_id: str, transaction: Transaction) -> None:
        async with self.session_factory() as session:
            session.add(_transaction_record(order_id, transaction))
            await session.commit()

    @_storage_errors
    async def transition_if_created(self, order_id: str, status: OrderStatus,
                                    transaction: Transaction) -> bool:
        """
        Append the transaction and move the order to `status`, but only if it
        is still `created`. Both writes commit together. Returns whether the
        status changed; False means another delivery already settled it.
        """
        stmt = (
            update(OrderRecord)
            .where(OrderRecord.id == order_id, OrderRecord.status == OrderStatus.CREATED.value)
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            res = await session.exec(stmt)
            session.add(_transaction_record(order_id, transaction))
            await session.commit()
            return res.rowcount == 1

    # Each side effect of a paid order is claimed by setting its marker with
    # `... WHERE marker IS NULL`. Only the worker whose update hit the row may
    # perform it; on failure it releases the claim for a later retry.

    @_storage_errors
    async def claim_access_grant(self, order_id: str) -> bool:
        return await self._claim(order_id, "access_granted_at")

    @_storage_errors
    async def release_access_grant(self, order_id: str) -> None:
        await self._release(order_id, "access_granted_at")

    @_storage_errors
    async def claim_notification(self, order_id: str) -> bool:
        return await self._claim(order_id, "notified_at")

    @_storage_errors
    async def release_notification(self, order_id: str) -> None:
        await self._release(order_id, "notified_at")

    async def _claim(self, order_id: str, column: str) -> bool:
        now = utcnow()
        stmt = (
            update(OrderRecord)
            .where(OrderRecord.id == order_id, getattr(OrderRecord, column).is_(None))
            .values({column: now, "updated_at": now})
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            res = await session.exec(stmt)
            await session.commit()
            return res.rowcount == 1

    async def _release(self, order_id: str, column: str) -> None:
        stmt = (
            update(OrderRecord)
            .where(OrderRecord.id == order_id)
            .values({column: None, "updated_at": utcnow()})
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            await session.exec(stmt)
            await session.commit()

    @_storage_errors
    async def list_unfulfilled(self, limit: int = 100) -> List[str]:
        """Ids of paid orders whose access grant or email didn't go through."""
        q = (
            select(OrderRecord.id)
            .where(OrderRecord.status == OrderStatus.PAID.value)
            .where(or_(OrderRecord.access_granted_at.is_(None), OrderRecord.notified_at.is_(None)))
            .order_by(OrderRecord.updated_at)
            .limit(limit)
        )
        async with self.session_factory() as session:
            res = await session.exec(q)
            return list(res.all())

    # ---------- offers & entitlements ----------

    @_storage_errors
    async def set_offer_content(self, offer_id: str, course_id: str, module_ids: Iterable[str] = ()) -> None:
        async with self.session_factory() as session:
            module_ids = list(module_ids)
            if not module_ids:
                session.add(OfferContentRecord(offer_id=offer_id, course_id=course_id))
            for module_id in module_ids:
                session.add(OfferContentRecord(offer_id=offer_id, course_id=course_id, module_id=module_id))
            await session.commit()

    @_storage_errors
    async def get_offer_content(self, offer_id: str) -> OfferContent:
        async with self.session_factory() as session:
            res = await session.exec(select(OfferContentRecord).where(OfferContentRecord.offer_id == offer_id))
            rows = res.all()
        content = OfferContent(offer_id=offer_id)
        for row in rows:
            if row.course_id not in content.course_ids:
                content.course_ids.append(row.course_id)
            if row.module_id and row.module_id not in content.module_ids:
                content.module_ids.append(row.module_id)
        return content

    @_storage_errors
    async def grant_access(self, student_id: str, course_ids: Iterable[str], module_ids: Iterable[str]) -> int:
        """Add courses and modules to the student's entitlements. Returns how many were new."""
        wanted = {(KIND_COURSE, c) for c in course_ids} | {(KIND_MODULE, m) for m in module_ids}
        if not wanted:
            return 0
        async with self.session_factory() as session:
            res = await session.exec(select(StudentAccess).where(StudentAccess.student_id == student_id))
            existing = {(a.kind, a.ref_id) for a in res.all()}
            missing = sorted(wanted - existing)
            for kind, ref_id in missing:
                session.add(StudentAccess(student_id=student_id, kind=kind, ref_id=ref_id))
            await session.commit()
        return len(missing)

    @_storage_errors
    async def has_access(self, student_id: str, module_id: str) -> bool:
        q = select(StudentAccess).where(
            StudentAccess.student_id == student_id,
            StudentAccess.kind == KIND_MODULE,
            StudentAccess.ref_id == module_id,
        )
        async with self.session_factory() as session:
            res = await session.exec(q)
            return res.first() is not None
