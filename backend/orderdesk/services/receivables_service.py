# Overview: Receivables poster; turns term-payment orders into dated installments.

from __future__ import annotations

import re
from datetime import date

from flask import current_app

from ..extensions import db
from ..models import Order, PaymentType, Receivable, ReceivableInstallment, ReceivablePayment
from ..models.orders import STATUS_ORDER_GENERATED, STATUS_INVOICED
from ..models.receivables import (
    RECEIVABLE_OPEN,
    RECEIVABLE_PARTIAL,
    RECEIVABLE_PAID,
    RECEIVABLE_CANCELLED,
    INSTALLMENT_OPEN,
    INSTALLMENT_PARTIAL,
    INSTALLMENT_PAID,
    INSTALLMENT_OVERDUE,
    INSTALLMENT_CANCELLED,
)
from ..time_utils import utcnow, add_days
from ..validation import ValidationError, coerce_int, MAX_CENTS
from .concurrency import lock_for_update, begin_serialized, run_with_retry
from .errors import (
    InvalidTransition,
    InvalidPaymentType,
    NoInstallmentSpec,
    InvalidInstallmentSpec,
    PartiallySettled,
    InstallmentNotFound,
    PaymentNotFound,
)
from .order_service import lock_order
from . import transition_log
"""
Receivables invariants

Posting:
- The payment type is checked first, then the order status.
- Only orders at ORDER_GENERATED or INVOICED may post; a quote has nothing
  to collect yet.
- Only active TERM payment types post. IMMEDIATE types (cash, card) are
  settled at the counter and never create installments.
- The schedule comes from the order's payment_notes ("30 60 90"), falling
  back to the payment type's default schedule.
- Installment amounts sum exactly to the order total. Leftover cents go one
  each to the first installments.
- due_date = order creation date + offset_days.
- At most one non-cancelled Receivable per order (accounts_posted flag).

Reversal:
- Refused when any installment still holds money (PartiallySettled).
  Reverse the payments first; each payment is its own row and can be
  reversed in full or in part.
- Otherwise the receivable and its installments are voided (CANCELLED),
  never deleted, so the history of postings survives.
"""


SPEC_SEPARATORS = re.compile(r"[\s,;/]+")
MAX_INSTALLMENTS = 120
MAX_OFFSET_DAYS = 3650


def parse_installment_spec(text: str | None) -> list[int]:
    """
    Parse an installment schedule into day offsets.

    "30 60 90", "30/60/90", "30,60;90" -> [30, 60, 90]
    "0" is a single installment due on the order date.
    """
    if text is None or not text.strip():
        raise NoInstallmentSpec("No installment schedule given", {"spec": text})

    offsets = []
    for token in SPEC_SEPARATORS.split(text.strip()):
        if not token:
            continue
        if not token.isdigit():
            raise InvalidInstallmentSpec(
                f"Invalid installment offset {token!r}: expected a whole number of days",
                {"spec": text, "token": token},
            )
        days = int(token)
        if days > MAX_OFFSET_DAYS:
            raise InvalidInstallmentSpec(
                f"Installment offset {days} exceeds {MAX_OFFSET_DAYS} days",
                {"spec": text, "token": token},
            )
        offsets.append(days)

    if not offsets:
        raise NoInstallmentSpec("No installment schedule given", {"spec": text})
    if len(offsets) > MAX_INSTALLMENTS:
        raise InvalidInstallmentSpec(
            f"At most {MAX_INSTALLMENTS} installments are supported",
            {"spec": text, "count": len(offsets)},
        )
    return offsets


def split_amount(total_cents: int, n: int) -> list[int]:
    """
    Split total_cents into n parts that differ by at most one cent.

    >>> split_amount(1000, 3)
    [334, 333, 333]
    """
    if n < 1:
        raise ValueError("n must be >= 1")
    if total_cents < 0:
        raise ValueError("total_cents must be >= 0")
    base, remainder = divmod(total_cents, n)
    return [base + 1 if i < remainder else base for i in range(n)]


def active_receivable(order_id: int) -> Receivable | None:
    return (
        db.session.query(Receivable)
        .filter(Receivable.order_id == order_id, Receivable.status != RECEIVABLE_CANCELLED)
        .order_by(Receivable.id.desc())
        .first()
    )


def _require_term_payment_type(order: Order) -> PaymentType:
    if order.payment_type_id is None:
        raise InvalidPaymentType(
            "Order has no payment type", {"order_id": order.id}
        )
    payment_type = db.session.get(PaymentType, order.payment_type_id)
    if payment_type is None or not payment_type.is_active:
        raise InvalidPaymentType(
            "Order payment type is missing or inactive",
            {"order_id": order.id, "payment_type_id": order.payment_type_id},
        )
    if not payment_type.is_term_based:
        raise InvalidPaymentType(
            f"Payment type {payment_type.name} is not a term payment type",
            {
                "order_id": order.id,
                "payment_type_id": payment_type.id,
                "classification": payment_type.classification,
            },
        )
    return payment_type


def post_accounts(order_id: int, actor: str | None) -> Receivable:
    """Create the receivable and its installments for a term-payment order."""
    def _op():
        begin_serialized()
        order = lock_order(order_id)
        payment_type = _require_term_payment_type(order)

        if order.status not in (STATUS_ORDER_GENERATED, STATUS_INVOICED):
            raise InvalidTransition(
                f"Receivables can only be posted for generated or invoiced orders, not {order.status}",
                current_status=order.status,
                action="post_accounts",
                order_id=order.id,
            )
        if order.accounts_posted:
            raise InvalidTransition(
                "Receivables are already posted for this order",
                current_status=order.status,
                action="post_accounts",
                order_id=order.id,
                accounts_posted=True,
            )

        spec = order.payment_notes
        if not spec or not spec.strip():
            spec = payment_type.default_installment_spec
        offsets = parse_installment_spec(spec)
        amounts = split_amount(order.total_cents, len(offsets))

        now = utcnow()
        receivable = Receivable(
            order_id=order.id,
            payment_type_id=payment_type.id,
            installment_spec=spec.strip(),
            amount_cents=order.total_cents,
            status=RECEIVABLE_OPEN,
            posted_by=actor,
            posted_at=now,
        )
        db.session.add(receivable)
        db.session.flush()

        base_date = order.created_at or now
        for sequence, (days, amount) in enumerate(zip(offsets, amounts), start=1):
            db.session.add(ReceivableInstallment(
                receivable_id=receivable.id,
                order_id=order.id,
                sequence=sequence,
                offset_days=days,
                due_date=add_days(base_date, days),
                amount_cents=amount,
                amount_paid_cents=0,
                status=INSTALLMENT_OPEN,
            ))

        order.accounts_posted = True
        order.accounts_posted_at = now
        order.accounts_posted_by = actor

        transition_log.record(
            order, "post_accounts", actor=actor, from_status=order.status,
            note=f"{len(offsets)} installment(s): {spec.strip()}",
        )
        db.session.commit()
        return receivable

    receivable = run_with_retry(_op)
    current_app.logger.info(
        "Receivable %s posted for order %s by %s (%s cents)",
        receivable.id, receivable.order_id, actor, receivable.amount_cents,
    )
    return receivable


def reverse_accounts(order_id: int, actor: str | None) -> Receivable:
    """Void the active receivable of an order, provided nothing was collected yet."""
    def _op():
        begin_serialized()
        order = lock_order(order_id)
        if not order.accounts_posted:
            raise InvalidTransition(
                "Receivables are not posted for this order",
                current_status=order.status,
                action="reverse_accounts",
                order_id=order.id,
                accounts_posted=False,
            )

        receivable = lock_for_update(
            db.session.query(Receivable)
            .filter(Receivable.order_id == order.id, Receivable.status != RECEIVABLE_CANCELLED)
            .order_by(Receivable.id.desc())
        ).first()

        installments = list(receivable.installments) if receivable else []
        settled = [
            {"installment_id": i.id, "sequence": i.sequence, "amount_paid_cents": i.amount_paid_cents}
            for i in installments
            if (i.amount_paid_cents or 0) > 0
        ]
        if settled:
            raise PartiallySettled(
                "Installments already received payments; reversal refused",
                {"order_id": order.id, "installments": settled},
            )

        now = utcnow()
        if receivable is not None:
            receivable.status = RECEIVABLE_CANCELLED
            receivable.cancelled_at = now
            receivable.cancelled_by = actor
            for installment in installments:
                installment.status = INSTALLMENT_CANCELLED
        else:
            current_app.logger.warning(
                "Order %s flagged accounts_posted without an active receivable", order.id
            )

        order.accounts_posted = False
        order.accounts_posted_at = None
        order.accounts_posted_by = None

        transition_log.record(order, "reverse_accounts", actor=actor, from_status=order.status)
        db.session.commit()
        return receivable

    receivable = run_with_retry(_op)
    current_app.logger.info("Receivables reversed for order %s by %s", order_id, actor)
    return receivable


def _refresh_receivable_status(receivable: Receivable) -> None:
    live = [i for i in receivable.installments if i.status != INSTALLMENT_CANCELLED]
    if live and all(i.status == INSTALLMENT_PAID for i in live):
        receivable.status = RECEIVABLE_PAID
    elif any((i.amount_paid_cents or 0) > 0 for i in live):
        receivable.status = RECEIVABLE_PARTIAL
    else:
        receivable.status = RECEIVABLE_OPEN


def _settle_status(installment: ReceivableInstallment) -> None:
    paid = installment.amount_paid_cents or 0
    if paid >= installment.amount_cents:
        installment.status = INSTALLMENT_PAID
        installment.paid_at = installment.paid_at or utcnow()
    elif paid > 0:
        installment.status = INSTALLMENT_PARTIAL
        installment.paid_at = None
    else:
        # Back to unpaid; refresh_overdue flags it again if it is past due
        installment.status = INSTALLMENT_OPEN
        installment.paid_at = None


def record_payment(installment_id: int, amount_cents, actor: str | None) -> ReceivablePayment:
    """
    Register money received against one installment.

    Each call writes one ReceivablePayment row. Partial amounts move the
    installment to PARTIAL; reaching the full amount marks it PAID. Paying
    more than what remains is rejected.
    """
    amount = coerce_int(amount_cents, "amount_cents", minimum=1, maximum=MAX_CENTS)

    def _op():
        begin_serialized()
        installment = lock_for_update(
            db.session.query(ReceivableInstallment).filter_by(id=installment_id).populate_existing()
        ).first()
        if not installment:
            raise InstallmentNotFound(
                f"Installment {installment_id} not found", {"installment_id": installment_id}
            )
        if installment.status in (INSTALLMENT_CANCELLED, INSTALLMENT_PAID):
            raise InvalidTransition(
                f"Cannot record a payment on a {installment.status} installment",
                current_status=installment.status,
                action="record_payment",
                installment_id=installment.id,
            )
        remaining = installment.amount_remaining_cents
        if amount > remaining:
            raise ValidationError(
                f"amount_cents ({amount}) exceeds the remaining balance ({remaining})",
                "amount_cents",
            )

        payment = ReceivablePayment(
            installment_id=installment.id,
            receivable_id=installment.receivable_id,
            order_id=installment.order_id,
            amount_cents=amount,
            reversed_cents=0,
            received_by=actor,
            received_at=utcnow(),
        )
        db.session.add(payment)

        installment.amount_paid_cents = (installment.amount_paid_cents or 0) + amount
        _settle_status(installment)
        _refresh_receivable_status(installment.receivable)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Payment %s of %s cents on installment %s by %s",
        payment.id, amount, payment.installment_id, actor,
    )
    return payment


def reverse_payment(payment_id: int, actor: str | None, *, amount_cents=None) -> ReceivablePayment:
    """
    Give back all or part of a recorded payment.

    amount_cents=None reverses whatever the payment still contributes. The
    installment and receivable statuses follow the new paid amount, so a
    fully reversed schedule can be reversed with reverse_accounts.
    """
    amount = None
    if amount_cents is not None:
        amount = coerce_int(amount_cents, "amount_cents", minimum=1, maximum=MAX_CENTS)

    def _op():
        begin_serialized()
        payment = lock_for_update(
            db.session.query(ReceivablePayment).filter_by(id=payment_id).populate_existing()
        ).first()
        if not payment:
            raise PaymentNotFound(f"Payment {payment_id} not found", {"payment_id": payment_id})

        net = payment.net_cents
        if net <= 0:
            raise InvalidTransition(
                "Payment is already fully reversed",
                action="reverse_payment",
                payment_id=payment.id,
            )
        to_reverse = net if amount is None else amount
        if to_reverse > net:
            raise ValidationError(
                f"amount_cents ({to_reverse}) exceeds the unreversed amount ({net})",
                "amount_cents",
            )

        installment = lock_for_update(
            db.session.query(ReceivableInstallment)
            .filter_by(id=payment.installment_id)
            .populate_existing()
        ).one()
        if installment.status == INSTALLMENT_CANCELLED:
            raise InvalidTransition(
                "Cannot reverse a payment on a cancelled installment",
                current_status=installment.status,
                action="reverse_payment",
                payment_id=payment.id,
            )

        payment.reversed_cents = (payment.reversed_cents or 0) + to_reverse
        payment.reversed_by = actor
        payment.reversed_at = utcnow()

        installment.amount_paid_cents = max(0, (installment.amount_paid_cents or 0) - to_reverse)
        _settle_status(installment)
        _refresh_receivable_status(installment.receivable)
        db.session.commit()
        return payment, to_reverse

    payment, reversed_amount = run_with_retry(_op)
    current_app.logger.info(
        "Payment %s reversed by %s cents (installment %s) by %s",
        payment.id, reversed_amount, payment.installment_id, actor,
    )
    return payment


def list_payments(installment_id: int) -> list[ReceivablePayment]:
    return (
        db.session.query(ReceivablePayment)
        .filter_by(installment_id=installment_id)
        .order_by(ReceivablePayment.id)
        .all()
    )


def refresh_overdue(as_of: date | None = None) -> int:
    """Flag OPEN installments due before `as_of` (default: today, UTC) as OVERDUE."""
    as_of = as_of or utcnow().date()

    def _op():
        begin_serialized()
        rows = (
            db.session.query(ReceivableInstallment)
            .filter(
                ReceivableInstallment.status == INSTALLMENT_OPEN,
                ReceivableInstallment.due_date < as_of,
            )
            .all()
        )
        for installment in rows:
            installment.status = INSTALLMENT_OVERDUE
        db.session.commit()
        return len(rows)

    count = run_with_retry(_op)
    current_app.logger.info("Overdue refresh as of %s: %d installment(s) flagged", as_of, count)
    return count


def list_installments(order_id: int, *, include_cancelled: bool = False) -> list[ReceivableInstallment]:
    q = db.session.query(ReceivableInstallment).filter_by(order_id=order_id)
    if not include_cancelled:
        q = q.filter(ReceivableInstallment.status != INSTALLMENT_CANCELLED)
    return q.order_by(ReceivableInstallment.receivable_id, ReceivableInstallment.sequence).all()
