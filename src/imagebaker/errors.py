"""Custom exception types used across the imagebaker pipeline."""
from __future__ import annotations

from typing import Mapping


class ImageBakerError(Exception):
    """Base exception for imagebaker-specific errors."""

    kind = "internal"


class ConfigValidationError(ImageBakerError):
    """Raised when build parameters are missing or conflicting."""

    kind = "validation"


class PreconditionError(ImageBakerError):
    """Raised when the remote environment rules out the build before provisioning."""

    kind = "precondition"


class RemoteCallError(ImageBakerError):
    """Raised when the control plane rejects or fails a request."""

    kind = "remote-call"

    def __init__(self, message: str, *, code: str | None = None, retryable: bool = False) -> None:
        super().__init__(f"[{code}] {message}" if code else message)
        self.code = code
        self.retryable = retryable
        self.message = message


class PollTimeoutError(ImageBakerError):
    """Raised when a polled resource never reaches the expected state."""

    kind = "timeout"

    def __init__(self, description: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}")
        self.description = description
        self.timeout = timeout


class BuildCancelledError(ImageBakerError):
    """Raised when the build context is cancelled by a deadline or an interrupt."""

    kind = "cancellation"


class ProvisionError(ImageBakerError):
    """Raised when the provisioning action inside the instance fails."""

    kind = "provision"


class PartialPropagationError(ImageBakerError):
    """Raised when some, but not all, image copies failed."""

    kind = "partial-propagation"

    def __init__(self, failures: Mapping[str, Exception]) -> None:
        self.failures = dict(failures)
        detail = "; ".join(f"{region}: {exc}" for region, exc in sorted(self.failures.items()))
        super().__init__(f"Image copy failed for region(s) {', '.join(sorted(self.failures))}: {detail}")

    @property
    def regions(self) -> list[str]:
        return sorted(self.failures)


class ArtifactDestroyError(ImageBakerError):
    """Raised when one or more images of an artifact could not be deleted."""

    kind = "remote-call"

    def __init__(self, failures: Mapping[str, Exception]) -> None:
        self.failures = dict(failures)
        detail = "; ".join(f"{region}: {exc}" for region, exc in sorted(self.failures.items()))
        super().__init__(f"Error deleting images: {detail}")


class MissingStateError(ImageBakerError, LookupError):
    """Raised when a step reads a state key that an earlier step should have written."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Required state key '{key}' is missing")
        self.key = key


class StepError(ImageBakerError):
    """Terminal error recorded by a step that halted the pipeline."""

    def __init__(self, step: str, message: str, *, cause: Exception | None = None) -> None:
        if cause is not None and message:
            text = f"{message}: {cause}"
        else:
            text = message or str(cause)
        super().__init__(f"Step '{step}' failed: {text}")
        self.step = step
        self.cause = cause
        self.message = text

    @property
    def kind(self) -> str:  # type: ignore[override]
        if isinstance(self.cause, ImageBakerError):
            return self.cause.kind
        return "internal"
