# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_INVOICE = "INVOICE"
DOC_PURCHASE = "PURCHASE"


def next_document_number(*, document_type: str, prefix: str, pad: int) -> str:
    """
    Allocate the next document number for a document type.

    Runs inside the caller's transaction: the number is only consumed if the
    caller commits, and a rolled-back sale leaves no gap. The increment is a
    single UPDATE so concurrent allocators serialize on the sequence row.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            # First document of this type; a savepoint keeps the outer
            # transaction usable if another writer inserts the row first.
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return f"{prefix}-{1:0{pad}d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return f"{prefix}-{current - 1:0{pad}d}"


def next_invoice_number() -> str:
    return next_document_number(document_type=DOC_INVOICE, prefix="INV", pad=6)


def next_purchase_number() -> str:
    return next_document_number(document_type=DOC_PURCHASE, prefix="PO", pad=5)
