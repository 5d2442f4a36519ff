"""Commission rule publication: command, handler and rule-set queries."""

import json
from dataclasses import replace
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import String, Text
from protean.utils.globals import current_domain

from settlement.commission.rules import CommissionRules, CommissionRuleSet
from settlement.domain import settlement
from settlement.exceptions import RuleNotFound
from settlement.locking import RULES_KEY, locks

logger = structlog.get_logger(__name__)


def _loads(value, empty):
    if value is None:
        return empty
    return json.loads(value) if isinstance(value, str) else value


@settlement.command(part_of="CommissionRuleSet")
class PublishCommissionRules:
    """Publish a new commission rule-set version and make it the active one."""

    default_rate = String(required=True, max_length=16)
    category_rates = Text()  # JSON: {category: rate}
    tier_rates = Text()  # JSON: {tier: rate}
    tier_category_rates = Text()  # JSON: {tier: {category: rate}}
    tier_thresholds = Text()  # JSON: [{"volume": int, "tier": str}], lowest tier first
    seller_rates = Text()  # JSON: {seller_id: rate}
    published_by = String(max_length=64)


def _active_rule_set() -> CommissionRuleSet | None:
    repo = current_domain.repository_for(CommissionRuleSet)
    return repo.query.filter(is_active=True).order_by("-version").all().first


def get_active_rules() -> CommissionRules:
    rule_set = _active_rule_set()
    if rule_set is None:
        raise RuleNotFound("No active commission rule set")
    return rule_set.to_rules()


def get_rules(version: int) -> CommissionRules:
    rule_set = current_domain.repository_for(CommissionRuleSet).query.filter(version=version).all().first
    if rule_set is None:
        raise RuleNotFound(f"Commission rule set version {version} does not exist", version=version)
    return rule_set.to_rules()


@settlement.command_handler(part_of=CommissionRuleSet)
class CommissionRulesHandler:
    @handle(PublishCommissionRules)
    def publish_rules(self, command: PublishCommissionRules) -> CommissionRules:
        draft = CommissionRules.build(
            version=0,
            default_rate=command.default_rate,
            category_rates=_loads(command.category_rates, {}),
            tier_rates=_loads(command.tier_rates, {}),
            tier_category_rates=_loads(command.tier_category_rates, {}),
            tier_thresholds=_loads(command.tier_thresholds, []),
            seller_rates=_loads(command.seller_rates, {}),
        )
        draft.validate()

        repo = current_domain.repository_for(CommissionRuleSet)
        with locks.scope() as scope:
            scope.lock(RULES_KEY)

            latest = repo.query.order_by("-version").limit(1).all().first
            rules = replace(draft, version=(latest.version if latest else 0) + 1)

            now = datetime.now(UTC)
            previous = _active_rule_set()
            if previous is not None:
                previous.deactivate(now)
                repo.add(previous)

            rule_set = CommissionRuleSet.from_rules(rules, published_by=command.published_by)
            rule_set.activate(previous_version=previous.version if previous else None, now=now)
            repo.add(rule_set)

        logger.info(
            "Commission rules published",
            version=rules.version,
            previous_version=previous.version if previous else None,
            published_by=command.published_by,
            seller_overrides=len(rules.seller_rates),
        )
        return rules
