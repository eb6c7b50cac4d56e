"""Error taxonomy shared by repositories, services and the HTTP layer.

Repositories return None / [] for "not found or not yours" and only raise
for things the caller has to react to differently. The HTTP layer maps each
class to a status code in boltstore.main; messages here are safe to show to
clients, never SQL or driver text.
"""


class BoltstoreError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(BoltstoreError):
    """A required field is missing or malformed. Raised before any query runs."""

    status_code = 400
    public_message = "Invalid request"


class AuthorizationError(BoltstoreError):
    status_code = 401
    public_message = "Unauthorized"


class NotFoundError(BoltstoreError):
    """Row absent or owned by someone else. The two cases are never told apart."""

    status_code = 404
    public_message = "Not found"


class ConflictError(BoltstoreError):
    status_code = 409
    public_message = "Conflict"


class InfrastructureError(BoltstoreError):
    status_code = 500
    public_message = "Internal server error"


class TransactionFailure(InfrastructureError):
    """A multi-statement operation failed and was rolled back."""

    public_message = "Operation failed and was rolled back"
