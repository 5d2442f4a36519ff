"""Settlement bounded context: order splitting, commission, seller earnings,
inventory holds and refunds for a multi-vendor marketplace.

Configuration lives in ``domain.toml`` beside this module; PROTEAN_ENV picks
the overlay (``test``, ``production``). Settlement constants such as the
hold TTL and the earnings holding period sit under ``[custom]`` and are read
as attributes of the domain (``settlement.hold_ttl_minutes``).
"""

import structlog
from protean.domain import Domain

settlement = Domain(name="settlement")

logger = structlog.get_logger(__name__)
