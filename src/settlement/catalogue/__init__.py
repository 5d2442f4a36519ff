"""Catalogue lookup factory.

Provides get_catalogue() / set_catalogue() to swap implementations. The
in-memory catalogue is the default until a real adapter is installed.
"""

from settlement.catalogue.fake_adapter import InMemoryCatalogue
from settlement.catalogue.port import CatalogueLookup

_current_catalogue: CatalogueLookup | None = None


def get_catalogue() -> CatalogueLookup:
    """Return the current catalogue. Defaults to InMemoryCatalogue."""
    global _current_catalogue
    if _current_catalogue is None:
        _current_catalogue = InMemoryCatalogue()
    return _current_catalogue


def set_catalogue(catalogue: CatalogueLookup) -> None:
    """Override the active catalogue (useful for tests)."""
    global _current_catalogue
    _current_catalogue = catalogue


def reset_catalogue() -> None:
    """Reset to default catalogue."""
    global _current_catalogue
    _current_catalogue = None
