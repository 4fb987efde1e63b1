"""Compliance engine error taxonomy.

Each error also derives from the builtin that the API's global exception
handler maps to an HTTP status, so domain code never imports FastAPI.
"""


class ComplianceError(Exception):
    """Base class for all compliance engine errors."""

    code = "compliance_error"


class NotFoundError(ComplianceError, LookupError):
    code = "not_found"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class InvalidSectionError(ComplianceError, ValueError):
    code = "invalid_section"


class InvalidCategoryError(ComplianceError, ValueError):
    code = "invalid_category"


class MissingFieldsError(ComplianceError, ValueError):
    code = "missing_fields"

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(f"Required fields missing: {', '.join(fields)}")


class InvalidTransitionError(ComplianceError, ValueError):
    code = "invalid_transition"


class ApprovalNotRequiredError(ComplianceError, ValueError):
    code = "approval_not_required"


class ApprovalRequiredError(ComplianceError, PermissionError):
    code = "approval_required"


class NotAuthorizedError(ComplianceError, PermissionError):
    code = "not_authorized"


class ConflictError(ComplianceError):
    """The entity's current state does not allow the requested change."""

    code = "conflict"


class InvestigationClosedError(ConflictError):
    code = "investigation_closed"


class ReportClosedError(ConflictError):
    code = "report_closed"


class ActiveInvestigationExistsError(ConflictError):
    code = "active_investigation_exists"

    def __init__(self, customer_id: str, investigation_number: str) -> None:
        self.customer_id = customer_id
        self.investigation_number = investigation_number
        super().__init__(
            f"Customer {customer_id} already has an active investigation "
            f"({investigation_number})"
        )


class ConcurrentModificationError(ConflictError):
    code = "concurrent_modification"


class NoRateAvailableError(ComplianceError):
    code = "no_rate_available"

    def __init__(self, from_currency: str, to_currency: str) -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"No live or cached {from_currency}->{to_currency} rate available"
        )


class PriceFeedError(ComplianceError):
    """The external price feed failed or returned an unusable payload."""

    code = "price_feed_error"


class PersistenceError(ComplianceError):
    code = "persistence_error"


class BelowThresholdError(ComplianceError, ValueError):
    code = "below_threshold"


class InvalidDecisionError(ComplianceError, ValueError):
    code = "invalid_decision"
