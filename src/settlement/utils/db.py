"""Schema management for the SQL providers configured in ``domain.toml``.

The memory provider used in tests needs no schema, so only sqlite and
postgresql providers are touched.
"""

from protean.domain import Domain
from sqlalchemy import create_engine

_SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for name, provider in domain.providers.items():
        if provider.conn_info["provider"] in _SQL_PROVIDERS:
            yield name, provider


def _register_models(domain: Domain, provider_name: str) -> None:
    """Build the SQLAlchemy model of every element stored by ``provider_name``.

    Models are built lazily on first repository access, so touch each DAO
    before asking the metadata for its tables.
    """
    registry = domain.registry
    for records in (registry.aggregates, registry.entities, registry.projections):
        for record in records.values():
            if record.cls.meta_.provider == provider_name:
                domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain) -> None:
    """Create tables for aggregates, entities and projections"""
    with domain.domain_context():
        for name, provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, name)
            provider._metadata.create_all(engine)


def drop_db(domain: Domain) -> None:
    """Drop every table the settlement domain created"""
    with domain.domain_context():
        for _, provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
