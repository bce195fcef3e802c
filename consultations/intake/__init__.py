from .factory import get_adapter
from .types import MedicalHistory, SymptomIntake
