# Overview: Request decorators for clinic scoping and staff attribution.

from functools import wraps
from flask import request, jsonify, g

from .services.tenant_service import require_active_clinic, TenantAccessError


STAFF_HEADER = "X-Staff-Member"


def require_clinic(f):
    """
    Validate the clinic in the URL and establish tenant context.

    Sets g.clinic_id. Unknown and inactive clinics both return 404.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        clinic_id = kwargs.get("clinic_id")
        try:
            clinic = require_active_clinic(clinic_id)
        except TenantAccessError as e:
            return jsonify({"error": str(e)}), 404

        g.clinic_id = clinic.id
        return f(*args, **kwargs)

    return decorated_function


def require_actor(f):
    """
    Require a staff identifier for writes; every stock movement is attributed.

    Sets g.actor from the X-Staff-Member header, 401 when it is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(STAFF_HEADER) or "").strip()
        if not actor:
            return jsonify({"error": f"{STAFF_HEADER} header required"}), 401

        g.actor = actor[:128]
        return f(*args, **kwargs)

    return decorated_function
