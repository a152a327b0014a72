"""Error taxonomy for the upload/publish pipeline.

Every stage failure is a ``PipelineError``. The ``label`` is the short text a
client gets to see; the chained ``__cause__`` and ``detail`` carry file paths,
tool diagnostics and store errors and are only ever logged.
"""

from __future__ import annotations


INPUT_VALIDATION = "input_validation"
TOOL_EXECUTION = "tool_execution"
STORAGE = "storage"
RESOURCE = "resource"


class PipelineError(Exception):
    category: str = RESOURCE
    status_code: int = 500
    label: str = "request failed"

    def __init__(self, detail: str | None = None, *, stage: str | None = None, label: str | None = None):
        self.detail = str(detail or self.label)
        self.stage = stage
        if label:
            self.label = label
        super().__init__(self.detail)

    def __str__(self) -> str:
        if self.stage:
            return f"{self.stage}: {self.detail}"
        return self.detail


# input_validation


class InvalidIdentifier(PipelineError):
    category = INPUT_VALIDATION
    status_code = 400
    label = "invalid id"


class MissingUpload(PipelineError):
    category = INPUT_VALIDATION
    status_code = 400
    label = "missing upload"


class UnsupportedMediaType(PipelineError):
    category = INPUT_VALIDATION
    status_code = 415
    label = "unsupported media type"


class OversizedUpload(PipelineError):
    category = INPUT_VALIDATION
    status_code = 413
    label = "upload too large"


class OwnershipMismatch(PipelineError):
    category = INPUT_VALIDATION
    status_code = 403
    label = "user does not have access to this video"


class VideoNotFound(PipelineError):
    category = INPUT_VALIDATION
    status_code = 404
    label = "video not found"


# tool_execution


class ProbeToolFailure(PipelineError):
    category = TOOL_EXECUTION
    label = "failed to inspect video"


class NoVideoStream(PipelineError):
    category = TOOL_EXECUTION
    label = "video has no streams"


class InvalidDimensions(PipelineError):
    category = TOOL_EXECUTION
    label = "invalid video dimensions"


class RemuxToolFailure(PipelineError):
    category = TOOL_EXECUTION
    label = "failed to process video for fast start"

    def __init__(self, detail: str | None = None, *, stderr: str = "", stage: str | None = None):
        self.stderr = stderr or ""
        super().__init__(detail, stage=stage)


class EmptyOutput(PipelineError):
    category = TOOL_EXECUTION
    label = "failed to process video for fast start"


# storage


class PublishFailure(PipelineError):
    category = STORAGE
    status_code = 502
    label = "failed to store video"


class SigningFailure(PipelineError):
    category = STORAGE
    status_code = 502
    label = "failed to sign video url"


# resource


class IOFailure(PipelineError):
    category = RESOURCE
    label = "failed to receive upload"


class EntropyUnavailable(PipelineError):
    category = RESOURCE
    label = "internal error"
