from __future__ import annotations


class BillingEngineError(Exception):
    pass


class NotFoundError(BillingEngineError):
    def __init__(self, model_label: str, identifier: object):
        self.model_label = model_label
        self.identifier = identifier
        super().__init__(f"{model_label} {identifier} does not exist.")


class ConflictError(BillingEngineError):
    pass


class IncompatibleMatchError(BillingEngineError):
    def __init__(self, bill_id: object, period_id: object, reason: str):
        self.bill_id = bill_id
        self.period_id = period_id
        self.reason = reason
        super().__init__(f"Bill {bill_id} cannot be matched to period {period_id}: {reason}")


class PartialBatchFailure(BillingEngineError):
    """Raised on request when a batch finished with failed items.

    The outcome still holds every successful item; nothing that succeeded
    has been rolled back.
    """

    def __init__(self, outcome):
        self.outcome = outcome
        failed = outcome.failed
        super().__init__(
            f"{len(failed)} of {len(outcome.items)} batch item(s) failed: "
            + "; ".join(f"{item.key}: {item.error}" for item in failed)
        )
