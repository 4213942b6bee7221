"""Exceptions raised by the face identification pipeline."""

from __future__ import annotations


class FaceIdError(Exception):
    """Base class for pipeline errors."""


class NoFaceDetected(FaceIdError):
    """No face found above any usable confidence. Caller may retry."""


class LowQuality(FaceIdError):
    """A face was found but fails the framing/size/centering checks.

    Attributes:
        hint: Operator-facing instruction (e.g. "Move closer to the camera")
    """

    def __init__(self, hint: str):
        super().__init__(hint)
        self.hint = hint


class AlignmentDegenerate(FaceIdError):
    """Landmark geometry cannot yield a valid similarity transform.

    Only raised inside the aligner, which recovers with a simpler crop.
    """


class InsufficientSamples(FaceIdError):
    """Enrollment or calibration collected too few valid captures.

    Attributes:
        required: Minimum number of valid samples
        received: Number of valid samples actually collected
    """

    def __init__(self, required: int, received: int, what: str = "samples"):
        super().__init__(
            f"Insufficient {what}: got {received}, need at least {required}"
        )
        self.required = required
        self.received = received
