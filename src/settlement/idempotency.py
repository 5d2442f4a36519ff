"""Processed-message keys for at-least-once deliveries.

Checkout, payment confirmation and refund events can arrive more than once.
Each handler checks its key (``checkout:<ref>``, ``payment:<ref>``,
``refund:<ref>``) before doing any work and records it, together with the
outcome it returned, in the same unit of work as the mutation.

Enforcement happens at two levels:
  A) Application level: ``ensure_not_processed`` looks the key up before any
     work, while the handler holds the message lock
  B) Aggregate level: a concurrent duplicate that got past A also changed
     the same order, so its commit fails the version check; protean retries
     the handler and the retry takes path A
"""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.exceptions import AlreadyProcessed


@settlement.aggregate
class ProcessedMessage:
    key = Identifier(identifier=True)
    kind = String(required=True, max_length=32)
    outcome = Text()  # JSON: result returned on first delivery
    processed_at = DateTime(required=True)


def checkout_key(payment_ref: str) -> str:
    return f"checkout:{payment_ref}"


def payment_key(payment_ref: str) -> str:
    return f"payment:{payment_ref}"


def refund_key(refund_ref: str) -> str:
    return f"refund:{refund_ref}"


def ensure_not_processed(key: str) -> None:
    """Raise AlreadyProcessed, carrying the stored outcome, when ``key`` was handled."""
    message = current_domain.repository_for(ProcessedMessage).get_or_none(key)
    if message is not None:
        raise AlreadyProcessed(key, outcome=json.loads(message.outcome or "{}"))


def mark_processed(key: str, kind: str, outcome: dict) -> ProcessedMessage:
    message = ProcessedMessage(
        key=key,
        kind=kind,
        outcome=json.dumps(outcome),
        processed_at=datetime.now(UTC),
    )
    current_domain.repository_for(ProcessedMessage).add(message)
    return message
