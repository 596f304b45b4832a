# Overview: Gap-free document numbering for invoices and purchase folios.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence

DOC_INVOICE = "INVOICE"
DOC_PURCHASE = "PURCHASE"


def next_document_number(*, document_type: str, prefix: str, pad: int | None = None) -> str:
    """
    Allocate the next number for a document type inside the caller's transaction.

    The increment is a single UPDATE ... SET next_number = next_number + 1 so
    two concurrent completions cannot read the same value; the number is
    only consumed if the surrounding transaction commits.
    """
    if pad is None:
        pad = current_app.config.get("INVOICE_NUMBER_PADDING", 6)

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        db.session.flush()
        number = 1

    return f"{prefix}-{number:0{pad}d}"
