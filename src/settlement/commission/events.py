"""Domain events for commission rule sets."""

from protean.fields import DateTime, Integer, String, Text

from settlement.domain import settlement


@settlement.event(part_of="CommissionRuleSet")
class CommissionRulesPublished:
    """A new commission rule-set version became the active one."""

    __version__ = 1

    version = Integer(required=True)
    previous_version = Integer()
    default_rate = String(required=True)
    tiers = Text()  # JSON: tier names, lowest first
    published_by = String()
    published_at = DateTime(required=True)
