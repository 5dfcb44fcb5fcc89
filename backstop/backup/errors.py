"""
Run-level exceptions shared by the orchestrator and its components.
"""


class RunError(Exception):
    """A primary-path failure, tagged with the step that failed."""

    def __init__(self, step: str, cause):
        super().__init__(f"{step} step failed: {cause}")
        self.step = step
        self.cause = cause
