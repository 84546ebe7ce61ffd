"""
Core domain exception base.

Every business failure of the billing core carries a stable machine-readable
code (e.g. PAYMENT_NOT_FOUND) next to the human-readable message. Service
packages derive their own base exception from DomainError.
"""


class DomainError(Exception):
    """Business failure with a stable error code."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", code: str = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}
