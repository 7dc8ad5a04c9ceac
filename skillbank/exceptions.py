"""
Custom exception hierarchy for skillbank.

All skill lifecycle exceptions derive from SkillBankError for easy catching.
Organized by domain: Configuration, External services, Storage, Validation.

None of these should ever reach the trading loop: batch passes catch them per
bucket/domain and the decision path degrades to staler or fewer skills.
"""


class SkillBankError(Exception):
    """Base exception for all skillbank errors."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(SkillBankError):
    """Configuration-related errors (env vars, settings)."""
    pass


class InvalidConfigValueError(ConfigurationError):
    """Configuration value invalid or out of range."""
    pass


# ============================================================================
# External Service Errors (LLM synthesis, decision source)
# ============================================================================

class ExternalServiceError(SkillBankError):
    """External collaborator failed (LLM call, decision feed)."""

    def __init__(self, message: str, operation: str = None, context: dict = None):
        """
        Initialize external service error with context.

        Args:
            message: Error message
            operation: Name of the operation that failed (e.g. "merge")
            context: Additional context dictionary
        """
        self.operation = operation
        self.context = context or {}

        full_message = message
        if operation:
            full_message = f"[{operation}] {message}"

        super().__init__(full_message)


class TransientExternalError(ExternalServiceError):
    """Timeout, rate limit or overload. Skip now, retry on the next scheduled run."""
    pass


class MalformedResponseError(ExternalServiceError):
    """Synthesis output could not be parsed or was empty."""
    pass


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(SkillBankError):
    """Persistent store errors. Aborts the specific operation only."""
    pass


class SkillNotFoundError(StorageError):
    """Referenced skill id does not exist."""
    pass


class InvalidStatusTransitionError(StorageError):
    """Attempted a status move other than active->archived or active->expired."""
    pass


class StaleBucketError(StorageError):
    """Compare-and-swap on a (domain, skill type) bucket lost to a concurrent writer."""

    def __init__(self, domain: str, bucket_type: str, expected_version: int):
        self.domain = domain
        self.bucket_type = bucket_type
        self.expected_version = expected_version
        super().__init__(
            f"Bucket ({domain}, {bucket_type}) moved past version {expected_version}"
        )


class DuplicateRecommendationError(StorageError):
    """A recommendation row already exists for this (decision, skill) pair."""
    pass


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(SkillBankError):
    """Input failed validation at a public boundary."""
    pass
