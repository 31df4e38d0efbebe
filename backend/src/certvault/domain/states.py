from enum import StrEnum


class VaultEntryKind(StrEnum):
    """What a vault entry holds; decides the backing file extension."""

    SECRET = "secret"  # <name>.key
    PRIVATE_KEY = "private_key"  # <name>.pem


class RequestType(StrEnum):
    ORIGIN_RSA = "origin-rsa"
    ORIGIN_ECC = "origin-ecc"
    KEYLESS_CERTIFICATE = "keyless-certificate"


class CertificateStatus(StrEnum):
    """Status of a certificate as reported by the CA."""

    REQUESTED = "requested"
    ISSUED = "issued"
    REVOKED = "revoked"


class LifecycleState(StrEnum):
    """All possible states of a managed certificate."""

    REQUESTED = "requested"
    ISSUED = "issued"
    ROTATION_SCHEDULED = "rotation_scheduled"
    REVOKED = "revoked"  # Terminal state
    FAILED = "failed"  # Terminal state


class LifecycleEvent(StrEnum):
    """All possible events that trigger lifecycle transitions."""

    ISSUED = "issued"
    ISSUANCE_FAILED = "issuance_failed"
    ROTATION_SCHEDULED = "rotation_scheduled"
    ROTATION_CANCELLED = "rotation_cancelled"
    SUPERSEDED = "superseded"
    REVOKED = "revoked"


class FailurePolicy(StrEnum):
    """What a rotation job does to its cadence after a failed run."""

    KEEP_CADENCE = "keep_cadence"
    BACKOFF = "backoff"
