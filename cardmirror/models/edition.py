"""
Edition vocabulary.

The catalog reports prices per *variant key* (``holofoil``,
``1stEditionNormal``, ...). Variant keys are mapped onto a small closed
set of editions; each edition becomes its own stored card.
"""

from dataclasses import dataclass
from enum import Enum


class Edition(str, Enum):
    """A physically distinct print run of a card."""

    UNLIMITED = "Unlimited"
    FIRST_EDITION = "1st Edition"
    SHADOWLESS = "Shadowless"
    REVERSE_HOLOFOIL = "Reverse Holofoil"
    NORMAL = "Normal"


class PriceVariant(str, Enum):
    """
    Known catalog price-variant keys.

    ``UNKNOWN`` is the fallback arm for any key the catalog adds later;
    it maps to no edition, so such prices are dropped.
    """

    FIRST_EDITION_HOLOFOIL = "1stEditionHolofoil"
    FIRST_EDITION_NORMAL = "1stEditionNormal"
    FIRST_EDITION = "1stEdition"
    UNLIMITED_HOLOFOIL = "unlimitedHolofoil"
    UNLIMITED = "unlimited"
    HOLOFOIL = "holofoil"
    NORMAL = "normal"
    REVERSE_HOLOFOIL = "reverseHolofoil"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, key: str) -> "PriceVariant":
        """Map a raw key to a variant. Never raises."""
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN

    @property
    def edition(self) -> Edition | None:
        return _VARIANT_EDITIONS.get(self)


# Bare holofoil/normal are the unlimited print in the common case
_VARIANT_EDITIONS: dict[PriceVariant, Edition] = {
    PriceVariant.FIRST_EDITION_HOLOFOIL: Edition.FIRST_EDITION,
    PriceVariant.FIRST_EDITION_NORMAL: Edition.FIRST_EDITION,
    PriceVariant.FIRST_EDITION: Edition.FIRST_EDITION,
    PriceVariant.UNLIMITED_HOLOFOIL: Edition.UNLIMITED,
    PriceVariant.UNLIMITED: Edition.UNLIMITED,
    PriceVariant.HOLOFOIL: Edition.UNLIMITED,
    PriceVariant.NORMAL: Edition.UNLIMITED,
    PriceVariant.REVERSE_HOLOFOIL: Edition.REVERSE_HOLOFOIL,
}


@dataclass(frozen=True, slots=True)
class EditionPrices:
    """Low / market / high prices in USD."""

    low: float = 0.0
    market: float = 0.0
    high: float = 0.0


@dataclass(frozen=True, slots=True)
class EditionData:
    """
    One edition derived from a catalog card's price map.

    Attributes:
        edition: Edition label
        variant_key: Raw catalog key the prices came from ("" when synthetic)
        prices: Resolved prices
    """

    edition: Edition
    variant_key: str
    prices: EditionPrices
