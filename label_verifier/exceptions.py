"""Errors raised by the verification pipeline.

Only the image decode and recognition stages fail hard. Parsing and matching
report uncertainty through empty fields and NOT_FOUND verdicts instead.
"""


class LabelVerificationError(Exception):
    """Base error for a verification that could not complete."""

    stage: str = "pipeline"

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ImageDecodeError(LabelVerificationError):
    """Image bytes are corrupt or not a supported format (JPEG/PNG). Not retryable."""

    stage = "preprocess"


class RecognitionFailed(LabelVerificationError):
    """The recognition engine failed to load or crashed. Retryable by the caller."""

    stage = "recognition"
