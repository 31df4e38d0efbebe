"""Certificate Authority integration.

This module provides:
- The Origin CA REST client (create, list, get, revoke)
- Authentication schemes (API key pair or service key)
- Request/response models
"""

from certvault.ca.auth import ApiKeyAuth, AuthMethod, ServiceKeyAuth
from certvault.ca.client import CertificateAuthorityClient
from certvault.ca.schemas import Certificate, CertificatePage, RevocationRecord

__all__ = [
    "ApiKeyAuth",
    "AuthMethod",
    "Certificate",
    "CertificateAuthorityClient",
    "CertificatePage",
    "RevocationRecord",
    "ServiceKeyAuth",
]
