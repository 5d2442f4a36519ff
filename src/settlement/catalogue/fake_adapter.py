"""In-memory catalogue for development and testing."""

from settlement.catalogue.port import CatalogueLookup, VariantListing


class InMemoryCatalogue(CatalogueLookup):
    def __init__(self) -> None:
        self.listings: dict[str, VariantListing] = {}
        self.calls: list[str] = []

    def add_variant(
        self,
        variant_id: str,
        seller_id: str,
        unit_price: int,
        category_id: str | None = None,
        on_hand: int = 0,
    ) -> VariantListing:
        listing = VariantListing(
            variant_id=variant_id,
            seller_id=seller_id,
            category_id=category_id,
            unit_price=unit_price,
            on_hand=on_hand,
        )
        self.listings[variant_id] = listing
        return listing

    def lookup(self, variant_id: str) -> VariantListing | None:
        self.calls.append(variant_id)
        return self.listings.get(variant_id)
