"""
Catalog API payload parsing.

Turns the JSON records returned by the Pokémon TCG API into
``CatalogSet`` and ``BaseCard`` values. Records without an id are
skipped; every other field is optional.
"""

import logging
from typing import Any

from cardmirror.models.catalog import BaseCard, CatalogSet

logger = logging.getLogger(__name__)


def parse_set(raw: dict[str, Any]) -> CatalogSet:
    """
    Parse one ``/sets`` record.

    Raises:
        KeyError: If the record has no id
    """
    images = raw.get("images") or {}
    return CatalogSet(
        id=raw["id"],
        name=raw.get("name") or raw["id"],
        series=raw.get("series"),
        release_date=raw.get("releaseDate"),
        total_cards=int(raw.get("total") or raw.get("printedTotal") or 0),
        logo=images.get("logo"),
        symbol=images.get("symbol"),
    )


def parse_sets(records: list[dict[str, Any]]) -> list[CatalogSet]:
    """Parse a list of set records, skipping any without an id."""
    sets: list[CatalogSet] = []
    for raw in records:
        if not raw.get("id"):
            logger.warning("Skipping catalog set without id: %r", raw.get("name"))
            continue
        sets.append(parse_set(raw))
    return sets


def parse_card(raw: dict[str, Any]) -> BaseCard:
    """
    Parse one ``/cards`` record.

    The price map is kept raw; interpreting it is the edition
    resolver's job.

    Raises:
        KeyError: If the record has no id
    """
    images = raw.get("images") or {}
    tcgplayer = raw.get("tcgplayer") or {}
    prices = tcgplayer.get("prices")
    card_set = raw.get("set") or {}

    return BaseCard(
        id=raw["id"],
        name=raw.get("name") or "Unknown",
        number=raw.get("number"),
        rarity=raw.get("rarity"),
        types=raw.get("types"),
        supertype=raw.get("supertype"),
        image_small=images.get("small"),
        image_large=images.get("large"),
        tcgplayer_url=tcgplayer.get("url"),
        set_id=card_set.get("id"),
        price_variants=prices if isinstance(prices, dict) else {},
    )


def parse_cards(records: list[dict[str, Any]]) -> list[BaseCard]:
    """Parse a list of card records, skipping any without an id."""
    cards: list[BaseCard] = []
    for raw in records:
        if not raw.get("id"):
            logger.warning("Skipping catalog card without id: %r", raw.get("name"))
            continue
        cards.append(parse_card(raw))
    return cards
