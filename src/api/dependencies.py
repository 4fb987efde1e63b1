"""Per-request dependencies: the shared engine and the acting staff identity."""

from fastapi import Header, Request

from src.domains.compliance.engine import ComplianceEngine
from src.domains.compliance.errors import NotAuthorizedError
from src.domains.compliance.models import StaffIdentity

MANAGEMENT_ROLES = frozenset({"management", "admin"})


def get_engine(request: Request) -> ComplianceEngine:
    return request.app.state.engine


def get_staff(
    x_staff_id: str | None = Header(default=None),
    x_staff_role: str | None = Header(default=None),
) -> StaffIdentity:
    """Resolve the acting staff member from headers set by the authenticating proxy."""
    if not x_staff_id:
        raise NotAuthorizedError("X-Staff-Id header is required")
    role = (x_staff_role or "").strip().lower()
    return StaffIdentity(staff_id=x_staff_id, is_management=role in MANAGEMENT_ROLES)
