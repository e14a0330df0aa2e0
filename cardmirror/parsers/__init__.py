from cardmirror.parsers.catalog import parse_card, parse_cards, parse_set, parse_sets

__all__ = [
    "parse_card",
    "parse_cards",
    "parse_set",
    "parse_sets",
]
