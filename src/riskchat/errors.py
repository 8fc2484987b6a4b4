"""Error taxonomy shared by all pillars."""

from typing import Optional


class RiskChatError(Exception):
    """Base error."""

    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# --- Staging: reported per file, never aborts a batch ---
class StagingError(RiskChatError):
    code = "staging_error"

    def __init__(self, message: str, file_name: str = "", code: Optional[str] = None):
        super().__init__(message, code)
        self.file_name = file_name


class FileTooLarge(StagingError):
    code = "file_too_large"


class UnsupportedType(StagingError):
    code = "unsupported_type"


class ReadFailure(StagingError):
    code = "read_failure"


# --- Building: surfaced before any network call ---
class BuildError(RiskChatError):
    code = "build_error"


class EmptyRequest(BuildError):
    code = "empty_request"


# --- Provider: surfaced as a terminal AI message, never retried ---
class ProviderError(RiskChatError):
    code = "provider_error"


class AuthMissing(ProviderError):
    code = "auth_missing"


class NetworkFailure(ProviderError):
    code = "network_failure"


class ProviderTimeout(NetworkFailure):
    code = "provider_timeout"


class ProviderRejected(ProviderError):
    code = "provider_rejected"


# --- Parsing: never escapes the response parser ---
class ParseError(RiskChatError):
    code = "parse_error"


# --- Persistence: logged and absorbed by the history store ---
class PersistenceError(RiskChatError):
    code = "persistence_error"


class QuotaExceeded(PersistenceError):
    code = "quota_exceeded"


class CorruptRecord(PersistenceError):
    code = "corrupt_record"


# --- Orchestration ---
class OrchestratorError(RiskChatError):
    code = "orchestrator_error"


class SubmitInProgress(OrchestratorError):
    """Raised when a submit or switch arrives while a turn is in flight."""

    code = "submit_in_progress"


# --- Identity ---
class AuthenticationError(RiskChatError):
    code = "authentication_error"


class InvalidCredentials(AuthenticationError):
    code = "invalid_credentials"
