"""
Multi-Tenant Service: Clinic Validation and Scoping Helpers

WHY: Every operation in this backend runs on behalf of exactly one clinic.
Clinic ids coming from the URL must be validated before any store is built,
and a clinic that does not exist must be indistinguishable from one that is
deactivated.

USAGE:
    from vetstock.services.tenant_service import require_active_clinic

    clinic = require_active_clinic(clinic_id)
"""

from ..extensions import db
from ..models import Clinic, DocumentSequence
from .tenant_store import InvoiceStore


class TenantAccessError(Exception):
    """Raised when a request targets an unknown or inactive clinic."""
    pass


def require_active_clinic(clinic_id: int) -> Clinic:
    clinic = db.session.query(Clinic).filter_by(id=clinic_id).first()
    if not clinic or not clinic.is_active:
        raise TenantAccessError("Clinic not found")
    return clinic


def create_clinic(name: str, code: str | None = None) -> Clinic:
    if not name or not name.strip():
        raise ValueError("Clinic name is required")

    normalized_code = code.strip().lower() if code else None
    if normalized_code:
        existing = db.session.query(Clinic).filter_by(code=normalized_code).first()
        if existing:
            raise ValueError(f"Clinic code '{normalized_code}' already exists")

    clinic = Clinic(name=name.strip(), code=normalized_code, is_active=True)
    db.session.add(clinic)
    db.session.flush()
    # Seeded here so concurrent first invoices only race on the versioned row
    db.session.add(DocumentSequence(clinic_id=clinic.id, document_type=InvoiceStore.sequence_type, next_number=1))
    db.session.commit()
    return clinic
