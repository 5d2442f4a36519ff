"""Catalogue lookup port (abstract interface).

The settlement core never owns product data. At checkout it asks the
catalogue who sells a variant, which category it belongs to and what it
costs right now; the answer is snapshotted onto the order line.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class VariantListing:
    """A variant as the catalogue currently lists it.

    ``unit_price`` is in minor units. ``on_hand`` seeds the stock record the
    first time the settlement core sees the variant.
    """

    variant_id: str
    seller_id: str
    category_id: str | None
    unit_price: int
    on_hand: int = 0


class CatalogueLookup(ABC):
    """Abstract catalogue interface."""

    @abstractmethod
    def lookup(self, variant_id: str) -> VariantListing | None:
        """Return the listing for ``variant_id``, or None when it is not sold."""
        ...
