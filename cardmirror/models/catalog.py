from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class CatalogSet:
    """
    A set as listed by the catalog API.

    Attributes:
        id: Catalog set id (e.g., "base1", "sv3pt5")
        name: Display name
        series: Series the set belongs to (e.g., "Base", "Scarlet & Violet")
        release_date: Release date as reported by the catalog ("1999/01/09")
        total_cards: Declared card count (``total``, else ``printedTotal``, else 0)
        logo: Logo image URL
        symbol: Set symbol image URL
    """

    id: str
    name: str
    series: str | None = None
    release_date: str | None = None
    total_cards: int = 0
    logo: str | None = None
    symbol: str | None = None


@dataclass(frozen=True, slots=True)
class BaseCard:
    """
    A single logical catalog card before edition expansion.

    Attributes:
        id: Catalog card id (e.g., "base1-4")
        name: Card name
        number: Collector number within the set
        rarity: Rarity label
        types: Energy types (Pokémon only)
        supertype: "Pokémon", "Trainer" or "Energy"
        image_small: Small image URL
        image_large: Large image URL
        tcgplayer_url: TCGplayer product URL
        set_id: Catalog set id, when the payload carries it
        price_variants: Raw ``tcgplayer.prices`` map, variant key -> price blob
    """

    id: str
    name: str
    number: str | None = None
    rarity: str | None = None
    types: list[str] | None = None
    supertype: str | None = None
    image_small: str | None = None
    image_large: str | None = None
    tcgplayer_url: str | None = None
    set_id: str | None = None
    price_variants: dict[str, Any] = field(default_factory=dict)
