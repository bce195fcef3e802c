from .store import SessionStore, clinical_session_key, get_session_store, session_key
from .types import (
    ClinicalSessionIssued,
    ConsultationTypeSelected,
    PaymentConfirmed,
    PaymentPending,
    Phase,
    Session,
    SymptomsCollected,
    require_phase,
    session_from_dict,
)
