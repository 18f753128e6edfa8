"""Exception taxonomy for CA workflow operations."""


class CAError(Exception):
    """Base class for every CA workflow failure."""


class AlreadyExistsError(CAError):
    """CA directory or certificate name already in use."""


class InputValidationError(CAError):
    """A required field is missing or malformed (email, domain, label)."""


class PolicyViolationError(CAError):
    """Request fails the signing policy; the request is rejected."""


class KeyUnavailableError(CAError):
    """Key material cannot be used (unreadable file, absent token)."""


class TokenBusyError(KeyUnavailableError):
    """Hardware token session is held by another signing operation."""


class NotFoundError(CAError):
    """No certificate or request matches the lookup."""


class AlreadyRevokedError(CAError):
    """Certificate is already revoked."""
