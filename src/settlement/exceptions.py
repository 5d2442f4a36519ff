"""Settlement error hierarchy.

Field-level input problems are raised as protean's ``ValidationError`` and
missing records as ``ObjectNotFoundError``. The errors below are the
settlement-specific failures. Each carries a ``context`` dict of identifiers
for logging and for the HTTP error body, and a ``retryable`` flag: only lock
contention is worth retrying; everything else is either a caller mistake or
a fatal integrity problem.
"""


class SettlementError(Exception):
    retryable = False

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": {key: _jsonable(value) for key, value in self.context.items()},
            "retryable": self.retryable,
        }


def _jsonable(value):
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


class InvalidVariant(SettlementError):
    pass


class InsufficientStock(SettlementError):
    def __init__(self, variant_id, requested, available, **context):
        super().__init__(
            f"Insufficient stock for variant {variant_id}: {available} available, {requested} requested",
            variant_id=variant_id,
            requested=requested,
            available=available,
            **context,
        )
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class InvalidTransition(SettlementError):
    def __init__(self, sub_order_id, current, target, **context):
        super().__init__(
            f"Cannot transition from {current} to {target}",
            sub_order_id=sub_order_id,
            current=current,
            target=target,
            **context,
        )
        self.current = current
        self.target = target


class PaymentPending(SettlementError):
    pass


class Contention(SettlementError):
    retryable = True


class AlreadyProcessed(SettlementError):
    """Raised when an idempotency key was already handled.

    Handlers catch it and return ``outcome``, the result recorded by the
    first delivery.
    """

    def __init__(self, key, outcome=None):
        super().__init__(f"Message {key} was already processed", key=key)
        self.key = key
        self.outcome = outcome or {}


class RuleNotFound(SettlementError):
    pass


class LedgerIntegrityError(SettlementError):
    pass
