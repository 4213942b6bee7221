"""High-level services for the face identification pipeline.

This package contains the services that orchestrate detection, alignment,
embedding, matching, liveness and calibration.
"""

from faceid.services.attendance import AttendanceLog, AttendanceRecord
from faceid.services.calibration import CalibrationService
from faceid.services.enrollment import EnrollmentService
from faceid.services.pipeline import FaceCapture, FacePipeline
from faceid.services.recognition import (
    IdentificationResult,
    IdentificationService,
    IdentificationStatus,
)

__all__ = [
    "AttendanceLog",
    "AttendanceRecord",
    "CalibrationService",
    "EnrollmentService",
    "FaceCapture",
    "FacePipeline",
    "IdentificationResult",
    "IdentificationService",
    "IdentificationStatus",
]
