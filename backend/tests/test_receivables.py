from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from orderdesk.extensions import db
from orderdesk.models import Order, PaymentType, Receivable, ReceivableInstallment, ReceivablePayment
from orderdesk.services import order_service, order_state_machine, receivables_service
from orderdesk.services.errors import (
    InvalidInstallmentSpec,
    InvalidPaymentType,
    InvalidTransition,
    NoInstallmentSpec,
    PartiallySettled,
    PaymentNotFound,
)
from orderdesk.services.receivables_service import parse_installment_spec, split_amount
from orderdesk.validation import ValidationError


def _generated_order(actor, product, payment_type, *, qty=1, notes=None):
    order = order_service.create_order(
        actor,
        items=[{"product_id": product.id, "quantity": qty}],
        payment_type_id=payment_type.id if payment_type else None,
        payment_notes=notes,
    )
    order_state_machine.reserve_order(order.id, actor)
    return order


@pytest.mark.parametrize("text,expected", [
    ("30 60 90", [30, 60, 90]),
    ("30/60/90", [30, 60, 90]),
    ("30, 60; 90", [30, 60, 90]),
    ("  0  ", [0]),
    ("28\t56", [28, 56]),
])
def test_parse_installment_spec(text, expected):
    assert parse_installment_spec(text) == expected


@pytest.mark.parametrize("text", [None, "", "   ", " , ; / "])
def test_parse_installment_spec_empty(text):
    with pytest.raises(NoInstallmentSpec):
        parse_installment_spec(text)


@pytest.mark.parametrize("text", ["30 abc", "-30", "30 60.5", "30d"])
def test_parse_installment_spec_invalid(text):
    with pytest.raises(InvalidInstallmentSpec):
        parse_installment_spec(text)


def test_split_amount_gives_remainder_to_earliest():
    assert split_amount(30000, 3) == [10000, 10000, 10000]
    assert split_amount(1000, 3) == [334, 333, 333]
    assert split_amount(2, 3) == [1, 1, 0]


def test_post_accounts_creates_dated_installments(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=30000)
    order = _generated_order(actor, p, term_payment, notes="30 60 90")

    receivable = receivables_service.post_accounts(order.id, actor)

    order = db.session.get(Order, order.id)
    assert order.accounts_posted is True
    assert order.accounts_posted_by == actor
    assert receivable.amount_cents == 30000

    installments = receivables_service.list_installments(order.id)
    base = order.created_at.date()
    assert [(i.sequence, i.amount_cents, i.due_date) for i in installments] == [
        (1, 10000, base + timedelta(days=30)),
        (2, 10000, base + timedelta(days=60)),
        (3, 10000, base + timedelta(days=90)),
    ]
    assert all(i.status == "OPEN" for i in installments)


def test_post_accounts_uses_payment_type_default_schedule(db_session, make_product, term_payment, actor):
    term_payment.default_installment_spec = "15 45"
    db_session.commit()
    p = make_product("P", on_hand=10, price_cents=1001)
    order = _generated_order(actor, p, term_payment)

    receivables_service.post_accounts(order.id, actor)

    amounts = [i.amount_cents for i in receivables_service.list_installments(order.id)]
    assert amounts == [501, 500]


def test_post_accounts_without_any_schedule(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10)
    order = _generated_order(actor, p, term_payment)

    with pytest.raises(NoInstallmentSpec):
        receivables_service.post_accounts(order.id, actor)
    assert db.session.get(Order, order.id).accounts_posted is False


def test_immediate_payment_type_never_posts(db_session, make_product, cash_payment, actor):
    p = make_product("P", on_hand=10)
    order = _generated_order(actor, p, cash_payment, notes="30")

    with pytest.raises(InvalidPaymentType):
        receivables_service.post_accounts(order.id, actor)
    assert db.session.query(Receivable).count() == 0


def test_order_without_payment_type_cannot_post(db_session, make_product, actor):
    p = make_product("P", on_hand=10)
    order = _generated_order(actor, p, None, notes="30")

    with pytest.raises(InvalidPaymentType):
        receivables_service.post_accounts(order.id, actor)


def test_quote_cannot_post(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10)
    order = order_service.create_order(
        actor, items=[{"product_id": p.id, "quantity": 1}],
        payment_type_id=term_payment.id, payment_notes="30",
    )
    with pytest.raises(InvalidTransition):
        receivables_service.post_accounts(order.id, actor)


def test_quote_with_immediate_payment_reports_the_payment_type(db_session, make_product, cash_payment, actor):
    p = make_product("P", on_hand=10)
    order = order_service.create_order(
        actor, items=[{"product_id": p.id, "quantity": 1}],
        payment_type_id=cash_payment.id, payment_notes="30",
    )
    with pytest.raises(InvalidPaymentType):
        receivables_service.post_accounts(order.id, actor)


def test_unknown_payment_classification_is_rejected(db_session):
    db_session.add(PaymentType(name="Barter", classification="BARTER", is_active=True))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_double_posting_is_rejected(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10)
    order = _generated_order(actor, p, term_payment, notes="30")
    receivables_service.post_accounts(order.id, actor)

    with pytest.raises(InvalidTransition):
        receivables_service.post_accounts(order.id, actor)
    assert db.session.query(Receivable).count() == 1


def test_reverse_voids_and_allows_reposting(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=900)
    order = _generated_order(actor, p, term_payment, notes="30 60 90")
    first = receivables_service.post_accounts(order.id, actor)

    receivables_service.reverse_accounts(order.id, "bob")

    voided = db.session.get(Receivable, first.id)
    assert voided.status == "CANCELLED"
    assert voided.cancelled_by == "bob"
    assert receivables_service.list_installments(order.id) == []
    assert len(receivables_service.list_installments(order.id, include_cancelled=True)) == 3
    assert db.session.get(Order, order.id).accounts_posted is False

    second = receivables_service.post_accounts(order.id, actor)
    assert second.id != first.id
    assert receivables_service.active_receivable(order.id).id == second.id


def test_reverse_partially_settled_changes_nothing(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=30000)
    order = _generated_order(actor, p, term_payment, notes="30 60 90")
    receivables_service.post_accounts(order.id, actor)
    first = receivables_service.list_installments(order.id)[0]
    receivables_service.record_payment(first.id, 2500, actor)

    with pytest.raises(PartiallySettled) as exc_info:
        receivables_service.reverse_accounts(order.id, actor)

    assert exc_info.value.details["installments"][0]["amount_paid_cents"] == 2500
    assert db.session.get(Order, order.id).accounts_posted is True
    statuses = [i.status for i in receivables_service.list_installments(order.id)]
    assert statuses == ["PARTIAL", "OPEN", "OPEN"]


def test_reverse_without_posting(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10)
    order = _generated_order(actor, p, term_payment, notes="30")
    with pytest.raises(InvalidTransition):
        receivables_service.reverse_accounts(order.id, actor)


def test_record_payment_settles_installment_and_header(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=1000)
    order = _generated_order(actor, p, term_payment, notes="30 60")
    receivable = receivables_service.post_accounts(order.id, actor)
    first, second = receivables_service.list_installments(order.id)

    payment = receivables_service.record_payment(first.id, 200, actor)
    assert payment.amount_cents == 200
    assert payment.installment.status == "PARTIAL"
    assert db.session.get(Receivable, receivable.id).status == "PARTIAL"

    with pytest.raises(ValidationError):
        receivables_service.record_payment(first.id, 301, actor)

    receivables_service.record_payment(first.id, 300, actor)
    receivables_service.record_payment(second.id, 500, actor)

    assert db.session.get(Receivable, receivable.id).status == "PAID"
    with pytest.raises(InvalidTransition):
        receivables_service.record_payment(second.id, 1, actor)


def test_refresh_overdue_flags_only_open_past_due(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=900)
    order = _generated_order(actor, p, term_payment, notes="0 30 60")
    receivables_service.post_accounts(order.id, actor)
    first, second, third = receivables_service.list_installments(order.id)
    receivables_service.record_payment(second.id, 100, actor)

    as_of = db.session.get(Order, order.id).created_at.date() + timedelta(days=45)
    assert receivables_service.refresh_overdue(as_of) == 1

    statuses = {i.sequence: i.status for i in db.session.query(ReceivableInstallment).all()}
    assert statuses == {1: "OVERDUE", 2: "PARTIAL", 3: "OPEN"}


def test_payment_reversal_unblocks_reverse_and_cancel(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=1000)
    order = _generated_order(actor, p, term_payment, notes="30 60")
    receivables_service.post_accounts(order.id, actor)
    first = receivables_service.list_installments(order.id)[0]
    payment = receivables_service.record_payment(first.id, 1, actor)

    with pytest.raises(PartiallySettled):
        receivables_service.reverse_accounts(order.id, actor)
    with pytest.raises(InvalidTransition):
        order_state_machine.cancel_order(order.id, actor)

    payment = receivables_service.reverse_payment(payment.id, "bob")
    assert (payment.net_cents, payment.reversed_by) == (0, "bob")
    assert payment.installment.status == "OPEN"
    assert payment.installment.receivable.status == "OPEN"

    receivables_service.reverse_accounts(order.id, actor)
    cancelled = order_state_machine.cancel_order(order.id, actor)

    assert cancelled.status == "CANCELLED"
    assert (p.on_hand, p.reserved) == (10, 0)
    assert db.session.query(ReceivablePayment).count() == 1


def test_partial_payment_reversal(db_session, make_product, term_payment, actor):
    p = make_product("P", on_hand=10, price_cents=1000)
    order = _generated_order(actor, p, term_payment, notes="30 60")
    receivables_service.post_accounts(order.id, actor)
    first, _ = receivables_service.list_installments(order.id)
    payment = receivables_service.record_payment(first.id, 500, actor)
    assert payment.installment.status == "PAID"

    payment = receivables_service.reverse_payment(payment.id, actor, amount_cents=100)
    installment = payment.installment
    assert (payment.net_cents, installment.amount_paid_cents) == (400, 400)
    assert installment.status == "PARTIAL"
    assert installment.paid_at is None

    with pytest.raises(ValidationError):
        receivables_service.reverse_payment(payment.id, actor, amount_cents=401)

    receivables_service.reverse_payment(payment.id, actor)
    assert db.session.get(ReceivableInstallment, first.id).amount_paid_cents == 0

    with pytest.raises(InvalidTransition):
        receivables_service.reverse_payment(payment.id, actor)
    assert [pm.id for pm in receivables_service.list_payments(first.id)] == [payment.id]


def test_reverse_unknown_payment(db_session, actor):
    with pytest.raises(PaymentNotFound):
        receivables_service.reverse_payment(4242, actor)
