"""
Regex attribute extraction for product names and descriptions.

Each category has one pattern; the first match per category wins. Values are
lowercased with whitespace collapsed so they can be compared and voted on.
"""

import re
from typing import Dict, List, Optional, Pattern, Tuple

_NUMBER = r"\d+(?:[.,]\d+)?"

SIZE_PATTERN = re.compile(
    rf"\b{_NUMBER}\s*(?:fl\.?\s*oz|ml|cl|kg|mg|g|lbs?|oz|litres?|liters?|l|cm|mm|inch(?:es)?|gallons?|gal|pints?|pt|quarts?|qt)\b",
    re.I,
)
QUANTITY_PATTERN = re.compile(
    r"\b(?:pack of \d+|set of \d+|\d+\s*-?\s*(?:pack|pk|count|ct|pcs|pieces|units|servings))\b",
    re.I,
)
DIMENSIONS_PATTERN = re.compile(
    rf"\b{_NUMBER}\s*[x×]\s*{_NUMBER}(?:\s*[x×]\s*{_NUMBER})?(?:\s*(?:cm|mm|inch(?:es)?|in|m)\b)?",
    re.I,
)

ATTRIBUTE_PATTERNS: List[Tuple[str, Pattern]] = [
    ("size", SIZE_PATTERN),
    ("quantity", QUANTITY_PATTERN),
    ("dimensions", DIMENSIONS_PATTERN),
    ("material", re.compile(
        r"\b(stainless steel|cotton|leather|wool|silk|linen|polyester|nylon|denim|bamboo|wooden|wood|metal|steel|"
        r"aluminium|aluminum|plastic|glass|ceramic|porcelain|paper|rubber|silicone|gold|silver|copper|brass)\b",
        re.I,
    )),
    ("color", re.compile(
        r"\b(red|blue|green|yellow|black|white|pink|purple|orange|brown|grey|gray|beige|navy|gold|silver)\b", re.I
    )),
    ("flavor", re.compile(
        r"\b(vanilla|chocolate|strawberry|mint|lemon|cinnamon|caramel|original|spicy|mild|bbq|garlic|ginger|"
        r"berry|mango|salted|unsalted)\b",
        re.I,
    )),
    ("quality", re.compile(
        r"\b(premium|organic|artisanal|artisan|handmade|gourmet|luxury|deluxe|natural|pure|fair trade)\b", re.I
    )),
    ("packaging", re.compile(
        r"\b(bottle|jar|can|box|bag|pouch|tin|carton|sachet|tube|bundle|gift set)\b", re.I
    )),
    ("form", re.compile(
        r"\b(powder|liquid|capsules?|tablets?|frozen|fresh|dried|paste|cream|gel|spray|sliced|ground|whole)\b", re.I
    )),
    ("preparation", re.compile(
        r"\b(baked|fried|grilled|roasted|smoked|steamed|raw|cooked|ready[- ]to[- ]eat)\b", re.I
    )),
    ("age_group", re.compile(
        r"\b(kids?|children|child|baby|infant|toddler|adults?|teens?|seniors?)\b", re.I
    )),
]

# Keys that distinguish variants of one product rather than different products
VARIANT_AXES = {"size", "quantity", "dimensions", "color", "flavor", "packaging"}

# Keys whose conflict means two products cannot be the same family
EXCLUSIVE_ATTRIBUTES = {"material"}

# Spellings of one exclusive value; compared after normalization
EXCLUSIVE_SYNONYMS = {
    "material": {
        "wooden": "wood",
        "aluminum": "aluminium",
        "stainless steel": "steel",
    },
}

_SIZE_WORDS = re.compile(r"\b(x{0,2}s|x{0,3}l|small|medium|large|mini|jumbo|regular|family size)\b", re.I)
_PARENTHESIZED = re.compile(r"\([^)]*\)|\[[^\]]*\]")


def normalize_value(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().lower()


def canonical_value(key: str, value: object) -> object:
    """Normalized value of an exclusive attribute, synonyms folded together."""
    if not isinstance(value, str):
        return value
    value = normalize_value(value)
    return EXCLUSIVE_SYNONYMS.get(key, {}).get(value, value)


def extract_attributes(name: str, description: Optional[str] = None) -> Dict[str, str]:
    """Attributes found in a product name and description."""
    text = f"{name} {description or ''}"
    attributes: Dict[str, str] = {}
    for key, pattern in ATTRIBUTE_PATTERNS:
        match = pattern.search(text)
        if match:
            attributes[key] = normalize_value(match.group(0))
    return attributes


def core_name(name: str) -> str:
    """
    Name with variant tokens removed.

    "Red Wine 750ml" -> "Red Wine"; "Honey (Pack of 6) Large" -> "Honey"
    """
    stripped = _PARENTHESIZED.sub(" ", name)
    for pattern in (DIMENSIONS_PATTERN, SIZE_PATTERN, QUANTITY_PATTERN, _SIZE_WORDS):
        stripped = pattern.sub(" ", stripped)
    stripped = re.sub(r"[\s,/|-]+$", "", re.sub(r"^[\s,/|-]+", "", stripped))
    stripped = re.sub(r"\s+", " ", stripped).strip()
    return stripped or name.strip()


def defining_attributes(attributes: Dict[str, object]) -> Dict[str, object]:
    """Attributes that identify the product family (variant axes dropped)."""
    return {k: v for k, v in attributes.items() if k not in VARIANT_AXES and v not in (None, "")}
