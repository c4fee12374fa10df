"""Mass-scrape batches and corpus linking."""

from .models import Batch, BatchCreated, BatchProgress, BatchStatus, InconsistentProgress
from .ledger import LinkLedger
from .linker import CorpusLinker, LinkOutcome, wait_for_batch_completion
from .coordinator import BatchCoordinator, PendingAction

__all__ = [
    "Batch",
    "BatchCreated",
    "BatchProgress",
    "BatchStatus",
    "InconsistentProgress",
    "LinkLedger",
    "CorpusLinker",
    "LinkOutcome",
    "wait_for_batch_completion",
    "BatchCoordinator",
    "PendingAction",
]
