"""Job tracking: polling, lifecycle and submission."""

from .models import JobKind, JobListing, JobProgress, JobSnapshot, JobState, NotFound
from .poller import PollHandle, ProgressPoller
from .state_machine import JobStateMachine
from .tracker import JobTracker
from .submitter import JobSubmitter
from .board import JobBoard

__all__ = [
    "JobKind",
    "JobListing",
    "JobProgress",
    "JobSnapshot",
    "JobState",
    "NotFound",
    "PollHandle",
    "ProgressPoller",
    "JobStateMachine",
    "JobTracker",
    "JobSubmitter",
    "JobBoard",
]
