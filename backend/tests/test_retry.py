"""Bounded retry around one unit of work."""

import logging

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from orderdesk.extensions import db
from orderdesk.models import Product
from orderdesk.services.concurrency import run_with_retry
from orderdesk.services.errors import ConcurrencyConflict


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


class FlakyUnit:
    """Unit of work that fails `failures` times before returning `result`."""

    def __init__(self, failures, exc_factory, result="done"):
        self.failures = failures
        self.exc_factory = exc_factory
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_factory()
        return self.result


def test_transient_failure_succeeds_on_a_later_attempt(app, db_session, caplog):
    unit = FlakyUnit(2, _locked)

    with caplog.at_level(logging.WARNING):
        assert run_with_retry(unit, attempts=3) == "done"

    assert unit.calls == 3
    assert "retry 1/2" in caplog.text
    assert "retry 2/2" in caplog.text


@pytest.mark.parametrize("exc_factory,reason", [
    (_locked, "OperationalError"),
    (lambda: StaleDataError("version mismatch"), "StaleDataError"),
])
def test_exhausted_attempts_surface_as_concurrency_conflict(app, db_session, exc_factory, reason):
    unit = FlakyUnit(10, exc_factory)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        run_with_retry(unit, attempts=3)

    assert unit.calls == 3
    assert exc_info.value.details == {"attempts": 3, "reason": reason}
    assert exc_info.value.http_status == 503


def test_conflict_raised_by_the_unit_is_retried_then_reraised(app, db_session):
    conflict = ConcurrencyConflict("row moved", {"product_id": 1})
    unit = FlakyUnit(10, lambda: conflict)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        run_with_retry(unit, attempts=2)

    assert unit.calls == 2
    assert exc_info.value is conflict


def test_session_is_rolled_back_between_attempts(app, db_session):
    seen = []

    def unit():
        seen.append(db.session.query(Product).count())
        if len(seen) == 1:
            db.session.add(Product(sku="HALF", name="Half written", price_cents=1, on_hand=1, reserved=0))
            db.session.flush()
            raise _locked()
        return "done"

    assert run_with_retry(unit, attempts=2) == "done"
    assert seen == [0, 0]
    assert db.session.query(Product).filter_by(sku="HALF").count() == 0


def test_single_attempt_setting_disables_retry(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "ORDERDESK_RETRY_ATTEMPTS", 1)
    unit = FlakyUnit(1, _locked)

    with pytest.raises(ConcurrencyConflict):
        run_with_retry(unit)

    assert unit.calls == 1


def test_other_errors_propagate_without_retry(app, db_session):
    unit = FlakyUnit(5, lambda: ValueError("bad input"))

    with pytest.raises(ValueError):
        run_with_retry(unit, attempts=3)

    assert unit.calls == 1
