class PasskeyAuthError(Exception):
    """
    Base exception for authentication protocol and gating failures.

    ``message`` is safe to show to the end user. ``detail`` carries the internal
    cause and is only ever logged.
    """

    status_code: int = 400
    code: str = "passkey_error"
    message: str = "Passkey operation failed"

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        if message is not None:
            self.message = message
        self.detail = detail or self.message
        super().__init__(self.detail)


# --- Challenge lifecycle ---


class ChallengeNotFoundOrExpired(PasskeyAuthError):
    """Raised when a challenge is absent, already consumed or past its expiry."""

    status_code = 401
    code = "challenge_invalid"
    message = "Invalid or expired challenge"


class ChallengeSessionMismatch(PasskeyAuthError):
    """Raised when a user-bound challenge is answered for a different user."""

    status_code = 401
    code = "challenge_session_mismatch"
    message = "Challenge does not match user session"


class ChallengeTypeMismatch(PasskeyAuthError):
    """Raised when a registration challenge is used for authentication or vice versa."""

    status_code = 401
    code = "challenge_type_mismatch"
    message = "Invalid challenge type"


# --- Verification ---


class MalformedCredential(PasskeyAuthError):
    """Raised when the ceremony response cannot be parsed."""

    status_code = 400
    code = "credential_malformed"
    message = "Invalid credential format"


class OriginMismatch(PasskeyAuthError):
    status_code = 401
    code = "verification_failed"
    message = "Passkey verification failed"


class SignatureInvalid(PasskeyAuthError):
    status_code = 401
    code = "verification_failed"
    message = "Passkey verification failed"


class CounterNotIncrementing(PasskeyAuthError):
    """Raised when the authenticator counter did not advance (possible clone)."""

    status_code = 401
    code = "possible_clone"
    message = "Passkey may be cloned. Please contact support."


# --- Credentials & accounts ---


class CredentialNotRecognized(PasskeyAuthError):
    status_code = 401
    code = "credential_not_recognized"
    message = "Passkey not recognized"


class CredentialNotFound(PasskeyAuthError):
    status_code = 404
    code = "credential_not_found"
    message = "Passkey not found"


class CredentialConflict(PasskeyAuthError):
    status_code = 409
    code = "credential_conflict"
    message = "This authenticator is already registered"


class NameValidationFailed(PasskeyAuthError):
    status_code = 400
    code = "invalid_name"
    message = "Invalid passkey name"


class AccountNotApproved(PasskeyAuthError):
    status_code = 403
    code = "account_not_approved"
    message = "Account not authorized"


class TwoFactorRequiresCredential(PasskeyAuthError):
    status_code = 400
    code = "two_factor_requires_passkey"
    message = "Cannot enable 2FA without at least one enrolled passkey"


# --- Tokens & identity ---


class TokenExpired(PasskeyAuthError):
    status_code = 401
    code = "token_expired"
    message = "Token has expired"


class TokenInvalid(PasskeyAuthError):
    status_code = 401
    code = "token_invalid"
    message = "Invalid token"


class IdentityTokenInvalid(PasskeyAuthError):
    status_code = 401
    code = "identity_token_invalid"
    message = "Invalid identity token"


# --- Infrastructure ---


class StoreUnavailable(PasskeyAuthError):
    """Raised when the database cannot be reached. Callers may retry the whole ceremony."""

    status_code = 503
    code = "store_unavailable"
    message = "Database service temporarily unavailable"
