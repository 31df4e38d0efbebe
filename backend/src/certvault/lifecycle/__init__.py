"""Certificate lifecycle orchestration.

This module provides:
- The lifecycle manager (issue, rotate, revoke)
- The APScheduler-backed rotation job table
"""

from certvault.lifecycle.manager import CertificateLifecycleManager, RotationOutcome
from certvault.lifecycle.scheduler import RotationJob, RotationScheduler

__all__ = [
    "CertificateLifecycleManager",
    "RotationJob",
    "RotationOutcome",
    "RotationScheduler",
]
