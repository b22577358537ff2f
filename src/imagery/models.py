"""Data models for image providers."""

from typing import Literal, Optional
from pydantic import BaseModel

TaskStatus = Literal["pending", "running", "succeeded", "failed"]

# Remote status strings seen from the task backend, mapped to TaskStatus
_REMOTE_STATUS = {
    "PENDING": "pending",
    "QUEUED": "pending",
    "RUNNING": "running",
    "PROCESSING": "running",
    "SUCCEED": "succeeded",
    "SUCCEEDED": "succeeded",
    "SUCCESS": "succeeded",
    "FAILED": "failed",
    "FAIL": "failed",
}


class GenerationTask(BaseModel):
    """One polled snapshot of a remote text-to-image task."""

    task_id: str
    status: TaskStatus = "pending"
    output_url: Optional[str] = None  # Only set when status == "succeeded"
    error_message: Optional[str] = None

    @classmethod
    def from_poll(cls, task_id: str, payload: dict) -> "GenerationTask":
        """
        Build a snapshot from a poll response body.

        Unknown statuses map to "running" so the caller keeps polling.
        A success without any output image is reported as a failure.
        """
        raw_status = str(payload.get("task_status", "")).strip().upper()
        status = _REMOTE_STATUS.get(raw_status, "running")
        output_url = None
        error_message = payload.get("error_message")

        if status == "succeeded":
            images = payload.get("output_images") or []
            if images and isinstance(images[0], str) and images[0]:
                output_url = images[0]
            else:
                status = "failed"
                error_message = "Task succeeded but returned no image URL"

        return cls(
            task_id=task_id,
            status=status,
            output_url=output_url,
            error_message=error_message,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("succeeded", "failed")


class LoadResult(BaseModel):
    """Outcome of loading an image URL."""

    url: str
    ok: bool
    error: Optional[str] = None
