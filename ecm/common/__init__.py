from .models import (
    CaSettings,
    EnrollmentRequest,
    Job,
    TargetSettings,
)
from .validity import ValidityError, human_duration, parse_validity, parse_validity_strict

__all__ = [
    "CaSettings",
    "EnrollmentRequest",
    "Job",
    "TargetSettings",
    "ValidityError",
    "human_duration",
    "parse_validity",
    "parse_validity_strict",
]
