"""
Edition resolution.

Expands one catalog card into one record per physically distinct print
run. Each variant key in the card's TCGplayer price map is mapped onto
an edition; variants without a positive market price are ignored, and
when several keys land on the same edition the longer (more specific)
key wins, so ``unlimitedHolofoil`` beats a bare ``holofoil``.

Every card yields at least one edition: with no usable prices it gets a
single zero-priced Unlimited edition.
"""

import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

from cardmirror.models.catalog import BaseCard
from cardmirror.models.edition import Edition, EditionData, EditionPrices, PriceVariant

LOW_PRICE_FACTOR = 0.8
HIGH_PRICE_FACTOR = 1.5

DEFAULT_NUMBER = "N/A"
DEFAULT_RARITY = "Common"

TCGPLAYER_SEARCH_URL = "https://www.tcgplayer.com/search/pokemon/product"

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9-]")
_EDITION_SUFFIX = re.compile(
    r"-(unlimited|1st-edition|shadowless|reverse-holofoil|limited|normal)$"
)


def slug(name: str) -> str:
    """Lowercase, whitespace runs to hyphens, drop anything outside [a-z0-9-]."""
    return _NON_SLUG.sub("", _WHITESPACE.sub("-", name.lower()))


def edition_id(base_card_id: str, edition: Edition | str) -> str:
    """
    Deterministic id of an edition card.

    Example: ``edition_id("base1-4", "1st Edition") == "base1-4-1st-edition"``
    """
    label = edition.value if isinstance(edition, Edition) else edition
    return f"{base_card_id}-{slug(label)}"


def extract_base_card_id(edition_card_id: str) -> str:
    """Strip a known edition suffix; ids without one are returned unchanged."""
    return _EDITION_SUFFIX.sub("", edition_card_id)


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value) if value > 0 else None


def _edition_from_variant(variant_key: str, blob: Any) -> EditionData | None:
    edition = PriceVariant.parse(variant_key).edition
    if edition is None or not isinstance(blob, dict):
        return None

    market = _positive_number(blob.get("market"))
    if market is None:
        return None

    low = _positive_number(blob.get("low")) or market * LOW_PRICE_FACTOR
    high = _positive_number(blob.get("high")) or market * HIGH_PRICE_FACTOR
    return EditionData(
        edition=edition,
        variant_key=variant_key,
        prices=EditionPrices(low=low, market=market, high=high),
    )


def deduplicate_editions(editions: list[EditionData]) -> list[EditionData]:
    """
    Keep one record per edition, preferring the longer variant key.

    On equal key lengths the first record seen is kept.
    """
    by_edition: dict[Edition, EditionData] = {}
    for data in editions:
        existing = by_edition.get(data.edition)
        if existing is None or len(data.variant_key) > len(existing.variant_key):
            by_edition[data.edition] = data
    return list(by_edition.values())


def resolve_editions(base_card: BaseCard) -> list[EditionData]:
    """
    Derive the editions of a catalog card.

    Returns:
        At least one EditionData; a synthetic zero-priced Unlimited
        edition when no variant has a usable market price.
    """
    candidates: list[EditionData] = []
    for variant_key, blob in base_card.price_variants.items():
        data = _edition_from_variant(variant_key, blob)
        if data is not None:
            candidates.append(data)

    editions = deduplicate_editions(candidates)
    if not editions:
        return [EditionData(edition=Edition.UNLIMITED, variant_key="", prices=EditionPrices())]
    return editions


def card_row(base_card: BaseCard, set_id: str, edition: Edition | str) -> dict[str, Any]:
    """Build the ``cards`` row for one edition of a catalog card."""
    label = edition.value if isinstance(edition, Edition) else edition
    return {
        "id": edition_id(base_card.id, edition),
        "base_card_id": base_card.id,
        "set_id": set_id,
        "name": base_card.name,
        "number": base_card.number or DEFAULT_NUMBER,
        "rarity": base_card.rarity or DEFAULT_RARITY,
        "types": base_card.types or None,
        "supertype": base_card.supertype,
        "image_small": base_card.image_small,
        "image_large": base_card.image_large,
        "tcgplayer_url": base_card.tcgplayer_url,
        "edition": label,
    }


def build_edition_rows(
    base_card: BaseCard,
    set_id: str,
    now: datetime,
) -> list[tuple[dict[str, Any], dict[str, Any]]]:
    """
    Expand a catalog card into ``(card_row, price_row)`` pairs.

    Args:
        base_card: Parsed catalog card
        set_id: Set the card is stored under
        now: Timestamp written to ``prices.last_updated``
    """
    rows: list[tuple[dict[str, Any], dict[str, Any]]] = []
    for data in resolve_editions(base_card):
        card = card_row(base_card, set_id, data.edition)
        price = {
            "card_id": card["id"],
            "tcgplayer_market": data.prices.market,
            "tcgplayer_low": data.prices.low,
            "tcgplayer_high": data.prices.high,
            "last_updated": now,
        }
        rows.append((card, price))
    return rows


def build_tcgplayer_search_url(card_name: str, set_name: str, number: str, edition: str) -> str:
    """
    TCGplayer search URL for one edition.

    The catalog only links the base product, so editions get a search
    query instead of a product page.
    """
    query = f"{card_name} {number} {edition} {set_name}".strip()
    return f"{TCGPLAYER_SEARCH_URL}?q={quote(query, safe='')}"
