"""Exceptions raised by the enrichment pipeline."""


class PipelineError(RuntimeError):
    """A stage failed in a way that fails the whole job."""


class JobCancelled(PipelineError):
    """The job was cancelled while it was running."""

    def __init__(self, message: str = "Cancelled by request"):
        super().__init__(message)
