from typing import Any, Dict, Optional


class PipelineError(Exception):
    """
    Base for every failure the query/chart pipeline reports to its caller.

    The caller is usually an autonomous agent, so `message` must say what
    failed and what to do differently. `details` carries machine-readable
    extras (suggestions, counts, caps).
    """
    code = "pipeline_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {"code": self.code, "message": self.message, **self.details},
        }


class GuardRejected(PipelineError):
    """Unsafe or malformed query text. Never executed."""
    code = "guard_rejected"


class ExecutionFailed(PipelineError):
    code = "execution_failed"


class ExecutionTimeout(PipelineError):
    code = "execution_timeout"
    status_code = 408


class FieldNotFound(PipelineError):
    code = "field_not_found"
    status_code = 422


class ChartTypeMismatch(PipelineError):
    code = "chart_type_mismatch"
    status_code = 422


class VolumeExceeded(PipelineError):
    code = "volume_exceeded"
    status_code = 422


class AggregationIneligible(PipelineError):
    code = "aggregation_ineligible"
    status_code = 422


class ArtifactUnavailable(PipelineError):
    """Query artifact missing, failed, empty, or owned by another dataset."""
    code = "artifact_unavailable"
    status_code = 404


class DatasetNotFound(PipelineError):
    code = "dataset_not_found"
    status_code = 404


class IngestFailed(PipelineError):
    """Uploaded file could not be converted or registered."""
    code = "ingest_failed"
