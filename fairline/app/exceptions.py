"""Custom exceptions for the waiting room application."""


class FairlineException(Exception):
    """Base class for waiting room errors with an HTTP status code.

    Every subclass defines a machine-readable ``code`` and its
    ``status_code`` so the transport layer can render a structured
    ``{"ok": false, "error": ..., "code": ...}`` response.
    """
    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {"ok": False, "error": self.message, "code": self.code}


class ChallengeError(FairlineException):
    """Base class for proof-of-work verification failures."""
    status_code = 400


class ChallengeUnknown(ChallengeError):
    """The nonce was never issued or was already used."""
    code = "challenge_unknown"
    default_message = "invalid challenge"


class ChallengeExpired(ChallengeError):
    code = "challenge_expired"
    default_message = "challenge expired"


class InvalidSolution(ChallengeError):
    """Digest mismatch or not enough leading zeros."""
    code = "invalid_solution"
    default_message = "bad solution"


class ProofRequired(FairlineException):
    """Join attempted without a valid, unused proof token.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    code = "proof_required"
    default_message = "pow required"


class TokenInvalid(FairlineException):
    """Queue token failed signature, format or expiry checks."""
    status_code = 400
    code = "token_invalid"
    default_message = "bad token"


class TokenUnknown(FairlineException):
    """Queue token is well formed but no longer tracked by the engine."""
    status_code = 404
    code = "token_unknown"
    default_message = "unknown token"


class AdminUnauthorized(FairlineException):
    status_code = 403
    code = "admin_unauthorized"
    default_message = "forbidden"


class BadRequest(FairlineException):
    """Malformed request body or parameters."""
    status_code = 400
    code = "bad_request"
    default_message = "bad request"
