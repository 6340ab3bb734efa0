"""
Reconciliation error taxonomy.

Row-level sparsity is not an error (see ``SkipReason``); everything here
fails a whole operation and is surfaced to the operator as-is.
"""


class ReconciliationError(Exception):
    """Base class for snapshot reconciliation failures."""


class SnapshotFormatError(ReconciliationError):
    """The uploaded file could not be read as a tabular grid."""

    def __init__(self, filename: str | None, detail: str):
        self.filename = filename
        self.detail = detail
        label = filename or "snapshot"
        super().__init__(f"Could not read {label} as a spreadsheet: {detail}. Check the file format and try again.")


class CommitBatchError(ReconciliationError):
    """A write batch failed after zero or more batches were already committed.

    Committed batches are not rolled back. Re-running the import is safe:
    rows that were already applied classify as unchanged on the next pass.
    """

    def __init__(
        self,
        *,
        batches_committed: int,
        committed_adds: int,
        committed_updates: int,
        cause: BaseException,
    ):
        self.batches_committed = batches_committed
        self.committed_adds = committed_adds
        self.committed_updates = committed_updates
        self.cause = cause
        super().__init__(
            f"Import stopped after {batches_committed} committed batch(es) "
            f"({committed_adds} added, {committed_updates} updated): {cause}. "
            "Re-run the import; already-applied rows will classify as unchanged."
        )


class PlanNotFoundError(ReconciliationError):
    """No pending plan exists for the id (unknown, cancelled, or already committed)."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Reconciliation plan {plan_id} not found or already consumed")
