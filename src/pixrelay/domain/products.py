"""Offer/plan code -> product label resolution."""

from collections.abc import Mapping

UNKNOWN_PRODUCT = "UNKNOWN"


class ProductCatalog:
    """Static lookup table from provider offer/plan codes to product labels.

    Providers send one code per sale (Kirvano: the first purchased offer,
    Perfect Pay: the plan); order bumps never change the label.
    """

    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = dict(mapping)

    def resolve(self, code: str | None) -> str:
        """Return the label for ``code``; unknown or empty codes map to UNKNOWN."""
        if not code:
            return UNKNOWN_PRODUCT
        return self._mapping.get(str(code), UNKNOWN_PRODUCT)
