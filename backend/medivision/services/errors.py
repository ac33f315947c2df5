"""
Reference-service error taxonomy.
Only the reference client raises these; the verifier absorbs them into a
conservative result instead of letting them reach its caller.
"""


class ReferenceServiceError(Exception):
    """The drug reference service could not give an authoritative answer."""


class CircuitOpenError(ReferenceServiceError):
    """The circuit breaker is open; no request was attempted."""


class RetriesExhaustedError(ReferenceServiceError):
    """Every retry attempt hit a transient fault."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class RetryableStatusError(Exception):
    """HTTP 429/5xx seen inside the retry loop."""

    def __init__(self, status_code: int):
        super().__init__(f"Reference API returned HTTP {status_code}")
        self.status_code = status_code
