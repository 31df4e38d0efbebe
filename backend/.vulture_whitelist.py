from backend.src.certvault.api.certificates import (
    cancel_rotation,
    get_certificate,
    issue_certificate,
    list_certificates,
    list_records,
    revoke_certificate,
    schedule_rotation,
)
from backend.src.certvault.api.schemas import (
    CertificateRecordResponse,
    RotationJobResponse,
)
from backend.src.certvault.api.vault import delete_entry, get_entry, list_entries, store_entry
from backend.src.certvault.ca.schemas import Certificate, CertificatePage, Envelope
from backend.src.certvault.domain.states import LifecycleEvent, RequestType
from backend.src.main import health_check
from backend.src.shared.config import Settings

# Pydantic Settings
Settings.model_config
Settings.APP_ENV

# Pydantic models (fields read by FastAPI serialization or populated from CA JSON)
Certificate.model_config
Certificate.expires_on
Certificate._derive_status
CertificatePage.per_page
Envelope._flatten
RotationJobResponse.model_config
CertificateRecordResponse.model_config
CertificateRecordResponse.predecessor_id
CertificateRecordResponse.successor_id

# Enums (CA request types we normalize away from)
RequestType.ORIGIN_ECC
RequestType.KEYLESS_CERTIFICATE
LifecycleEvent.ISSUANCE_FAILED

# FastAPI routes
issue_certificate
list_certificates
list_records
get_certificate
revoke_certificate
schedule_rotation
cancel_rotation
list_entries
store_entry
get_entry
delete_entry
health_check
