from __future__ import annotations

from typing import Literal

UploadBranch = Literal["original", "converted", "both"]


class CollaboratorError(RuntimeError):
    """Raised by external collaborators (object store, KV store, AI endpoints)."""

    def __init__(self, message: str, *, code: str = "collaborator_error"):
        super().__init__(message)
        self.code = code


class ServiceUnavailable(CollaboratorError):
    def __init__(self, message: str = "AI service is not available"):
        super().__init__(message, code="service_unavailable")


class RateLimited(CollaboratorError):
    def __init__(self, message: str = "AI service rate limit reached"):
        super().__init__(message, code="rate_limited")


class InvalidImage(CollaboratorError):
    def __init__(self, message: str = "Image could not be processed"):
        super().__init__(message, code="invalid_image")


class ObjectNotFound(CollaboratorError):
    def __init__(self, ref: str):
        super().__init__(f"Object not found: {ref}", code="not_found")
        self.ref = ref


class StoreUnavailable(CollaboratorError):
    def __init__(self, message: str = "Storage is not available"):
        super().__init__(message, code="store_unavailable")


class CallTimedOut(CollaboratorError):
    def __init__(self, label: str, timeout_s: float):
        super().__init__(f"{label} timed out after {timeout_s:g}s", code="timeout")


TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    ServiceUnavailable,
    RateLimited,
    StoreUnavailable,
    CallTimedOut,
)


class PipelineError(RuntimeError):
    """A stage failure that ends the job.

    ``code`` doubles as the job's failure reason, ``stage`` is the name of the
    progress step that was marked ``error``; the orchestrator fills it in when
    a component raises without knowing its step label.
    """

    def __init__(self, message: str, *, code: str, stage: str | None = None):
        super().__init__(message)
        self.code = code
        self.stage = stage


class JobDescriptionExtractionFailed(PipelineError):
    def __init__(self, message: str):
        super().__init__(message, code="jd_extraction_failed")


class ConversionFailed(PipelineError):
    def __init__(self, message: str):
        super().__init__(message, code="conversion_failed")


class UploadFailed(PipelineError):
    def __init__(self, which: UploadBranch, message: str | None = None):
        label = {
            "original": "Failed to upload the original document",
            "converted": "Failed to upload the converted image",
            "both": "Failed to upload the original document and the converted image",
        }[which]
        super().__init__(message or label, code="upload_failed")
        self.which = which


class ExtractionFailed(PipelineError):
    def __init__(self, message: str):
        super().__init__(message, code="extraction_failed")


class AnalysisFailed(PipelineError):
    def __init__(self, message: str, *, service_unavailable: bool = False):
        super().__init__(message, code="ai_unavailable" if service_unavailable else "analysis_failed")
        self.required = True
        self.service_unavailable = service_unavailable


class MalformedAnalysis(PipelineError):
    def __init__(self, raw_text: str):
        super().__init__("Received malformed analysis from AI. Please try again.", code="malformed_analysis")
        self.raw_text = raw_text


class PersistenceFailed(PipelineError):
    def __init__(self, message: str):
        super().__init__(message, code="persistence_failed")


class PipelineCancelled(PipelineError):
    def __init__(self, reason: str = "Job was cancelled"):
        super().__init__(reason, code="cancelled")


class AnalysisDegraded:
    """Non-fatal outcome of the best-effort markdown branch.

    Kept as a value rather than an exception: it is reported on the job, never
    raised through the pipeline.
    """

    __slots__ = ("branch", "message")

    def __init__(self, branch: str, message: str):
        self.branch = branch
        self.message = message

    def __repr__(self) -> str:
        return f"AnalysisDegraded(branch={self.branch!r}, message={self.message!r})"
