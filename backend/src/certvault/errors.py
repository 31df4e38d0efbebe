"""Error taxonomy for the vault, toolchain, CA client and lifecycle manager."""

from enum import StrEnum

# =============================================================================
# Vault
# =============================================================================


class VaultError(Exception):
    """Base class for vault failures."""

    pass


class NotFoundError(VaultError):
    """Raised when a vault entry does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Vault entry not found: {name}")


class AlreadyExistsError(VaultError):
    """Raised when storing under a name that is already taken."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Vault entry already exists: {name}")


class DecryptFailedError(VaultError):
    """Raised when a blob cannot be authenticated (tampered, truncated or wrong key)."""

    pass


class InvalidEntryNameError(VaultError):
    """Raised when an entry name cannot be mapped to a safe file name."""

    pass


# =============================================================================
# Toolchain
# =============================================================================


class ToolchainError(Exception):
    """Base class for key pair / CSR generation failures."""

    pass


class ToolchainFailure(ToolchainError):
    """Raised when the external toolchain exits non-zero or produces bad output."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class ValidationFailed(ToolchainError):
    """Raised when a generated private key does not pass the integrity check."""

    pass


# =============================================================================
# Certificate Authority
# =============================================================================


class CAError(Exception):
    """Base class for CA client failures."""

    pass


class TransportError(CAError):
    """Raised on network-level failure talking to the CA."""

    pass


class RequestRejected(CAError):
    """Raised when the CA answers with a non-success response."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"CA rejected request ({code}): {message}")


# =============================================================================
# Lifecycle
# =============================================================================


class RotationStep(StrEnum):
    FETCH = "fetch"
    GENERATE = "generate"
    VALIDATE = "validate"
    STORE = "store"
    CREATE = "create"
    REVOKE = "revoke"
    CANCELLED = "cancelled"


class RotationCancelled(Exception):
    """Raised inside a rotation when cancellation is observed at a step boundary."""

    pass


class RotationError(Exception):
    """Wraps the failure of one rotation attempt with where it happened."""

    def __init__(
        self,
        certificate_id: str,
        step: RotationStep,
        cause: Exception,
        successor_id: str | None = None,
    ):
        self.certificate_id = certificate_id
        self.step = step
        self.cause = cause
        self.successor_id = successor_id
        super().__init__(
            f"Rotation of {certificate_id} failed at step {step.value}: {cause}"
        )
