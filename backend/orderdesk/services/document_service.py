# Overview: Sequential document numbers (order numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .errors import ConcurrencyConflict


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next number for a document type inside the caller's transaction.

    The increment is a single UPDATE ... SET next_number = next_number + 1,
    so two writers can never read the same value. Losing the race to create
    the first row raises ConcurrencyConflict and the caller's unit of work
    is retried.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                "Document sequence initialised concurrently",
                {"document_type": document_type},
            ) from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
