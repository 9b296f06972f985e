from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

class Clinic(db.Model):
    """
    Multi-tenant root: every tenant is a Clinic.

    WHY: Shared-database multi-tenancy with strict isolation.
    Products, batches, stock movements and invoices all carry clinic_id,
    and every query touching them must be scoped by it.
    """
    __tablename__ = "clinics"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code (subdomain slug)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Clinic id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-clinic document sequences.

    WHY: Prevent race conditions when generating human-readable invoice numbers.
    Two writers that read the same next_number collide on version_id and the
    loser is retried.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("clinic_id", "document_type", name="uq_doc_sequences_clinic_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    clinic = db.relationship("Clinic", backref=db.backref("document_sequences", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}
