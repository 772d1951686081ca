from enum import Enum

from pydantic import BaseModel

IN_PROGRESS_STATUS = "in progress"


class PollOutcome(str, Enum):
    IN_PROGRESS = "in-progress"
    TERMINAL_SUCCESS = "terminal-success"
    TERMINAL_OTHER_STATUS = "terminal-other-status"
    TIMEOUT = "timeout"


class SubmissionPollState(BaseModel):
    """
    Tracks one outstanding submission while it is being polled.
    """
    submission_uid: str
    max_attempts: int
    attempts_used: int = 0
    error_waits: int = 0
    overall_status: str = IN_PROGRESS_STATUS
    outcome: PollOutcome = PollOutcome.IN_PROGRESS
    documents: list[dict] = []

    @property
    def exhausted(self) -> bool:
        return self.attempts_used >= self.max_attempts or self.error_waits >= self.max_attempts


class SubmissionPollResult(BaseModel):
    submission_uid: str
    outcome: PollOutcome
    status: str
    documentCount: int = 0
    documents: list[dict] = []
    attempts_used: int = 0


class SubmissionStatus(BaseModel):
    """
    One answer of the registry's submission-status endpoint.
    """
    submission_uid: str
    overall_status: str | None = None
    document_count: int = 0
    documents: list[dict] = []

    @property
    def is_terminal(self) -> bool:
        return bool(self.overall_status) and self.overall_status.strip().lower() != IN_PROGRESS_STATUS
