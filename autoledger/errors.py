"""Error taxonomy for message processing and posting."""


class AutoLedgerError(Exception):
    """Base class for all autoledger errors."""


class ExtractionError(AutoLedgerError):
    """The message could not be turned into a usable expense."""


class RateLimitedError(ExtractionError):
    """The extractor refused the request because of rate limiting."""


class ExtractionTimeoutError(ExtractionError):
    """The extractor did not answer in time."""


class ResolutionError(AutoLedgerError):
    """No usable account could be resolved for the message."""


class RuleConfigurationError(AutoLedgerError):
    """An automation rule is malformed and cannot be evaluated."""

    def __init__(self, message: str, rule_id: str | None = None, rule_name: str | None = None):
        super().__init__(message)
        self.rule_id = rule_id
        self.rule_name = rule_name


class StoreError(AutoLedgerError):
    """The record store answered with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(AutoLedgerError):
    """The transaction could not be created; nothing was mutated."""


class PartiallyAppliedError(AutoLedgerError):
    """The transaction exists but at least one balance update failed.

    Balances for ``account_id`` (and any account not listed in
    ``applied_account_ids``) are stale and need manual reconciliation.
    """

    def __init__(
        self,
        message: str,
        transaction_id: str,
        account_id: str,
        applied_account_ids: list[str] | None = None,
    ):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.account_id = account_id
        self.applied_account_ids = applied_account_ids or []


class PartiallyPostedError(AutoLedgerError):
    """Some records of a paired posting were created and a later one was not.

    No balance has been changed. The records in ``posted_transaction_ids``
    exist and must be removed or completed by hand; reposting the message
    would duplicate them.
    """

    def __init__(
        self,
        message: str,
        transfer_id: str | None,
        posted_transaction_ids: list[str],
    ):
        super().__init__(message)
        self.transfer_id = transfer_id
        self.posted_transaction_ids = posted_transaction_ids
