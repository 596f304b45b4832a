from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """Next number to hand out per document type (invoices, purchase folios)."""
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
