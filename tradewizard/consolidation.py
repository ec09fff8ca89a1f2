"""
Product consolidation: group raw product variants into product families.

1. Rule matching: explicit patterns (snack, corn dog, cheese) claim variants first.
2. Fuzzy clustering: remaining variants join the best-scoring existing group when
   the name score clears the threshold and attribute compatibility clears the gate;
   otherwise they found a new group.
3. Post-processing: merged attributes by majority vote, descriptions, truncation.

The result is deterministic for a given input order.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from rapidfuzz.distance import Levenshtein

from .attributes import (
    EXCLUSIVE_ATTRIBUTES,
    canonical_value,
    core_name,
    defining_attributes,
    extract_attributes,
    normalize_value,
)
from .config import ConsolidationSettings
from .models import ProductGroup, ProductVariant, StageResult, StageStatus

logger = logging.getLogger(__name__)

NEAR_EQUAL_THRESHOLD = 0.7


def string_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity, 1 - distance / max length, case-insensitive."""
    return Levenshtein.normalized_similarity(a.lower().strip(), b.lower().strip())


def _near_equal(key: str, a: Any, b: Any) -> bool:
    if key in EXCLUSIVE_ATTRIBUTES:
        return canonical_value(key, a) == canonical_value(key, b)
    if isinstance(a, str) and isinstance(b, str):
        return string_similarity(a, b) >= NEAR_EQUAL_THRESHOLD
    return a == b


def attribute_compatibility(product: Dict[str, Any], group: Dict[str, Any]) -> float:
    """
    How well a product's defining attributes agree with a group's.

    0.7 when either side has none, 0.0 on a conflicting exclusive attribute
    (material, compared exactly after synonym folding), 0.5 when no key is shared, else the share of shared keys that
    are near-equal.
    """
    a = defining_attributes(product)
    b = defining_attributes(group)
    if not a or not b:
        return 0.7
    for key in EXCLUSIVE_ATTRIBUTES:
        if key in a and key in b and not _near_equal(key, a[key], b[key]):
            return 0.0
    shared = [key for key in a if key in b]
    if not shared:
        return 0.5
    matches = sum(1 for key in shared if _near_equal(key, a[key], b[key]))
    return matches / len(shared)


def majority_vote(attribute_sets: List[Dict[str, Any]], ratio: float = 0.3) -> Dict[str, Any]:
    """
    Merge attributes across variants.

    A key is kept when a single most frequent value exists and it appears in at
    least `ratio` of the variants. Ties leave the key unset. Non-scalar values
    are not voted on.
    """
    total = len(attribute_sets)
    counts: Dict[str, Counter] = {}
    first_seen: Dict[Tuple[str, Any], Any] = {}
    for attributes in attribute_sets:
        for key, value in attributes.items():
            if not isinstance(value, (str, int, float, bool)) or value == "":
                continue
            token = normalize_value(value) if isinstance(value, str) else value
            counts.setdefault(key, Counter())[token] += 1
            first_seen.setdefault((key, token), value)

    merged: Dict[str, Any] = {}
    for key, counter in counts.items():
        ranked = counter.most_common()
        top_token, top_count = ranked[0]
        if len(ranked) > 1 and ranked[1][1] == top_count:
            continue
        if top_count >= ratio * total:
            merged[key] = first_seen[(key, top_token)]
    return merged


# ============================================================================
# Rules
# ============================================================================

def _pattern_extractor(**patterns: str) -> Callable[[str], Dict[str, str]]:
    compiled = {key: re.compile(pattern, re.I) for key, pattern in patterns.items()}

    def extract(text: str) -> Dict[str, str]:
        found = {}
        for key, pattern in compiled.items():
            match = pattern.search(text)
            if match:
                found[key] = normalize_value(match.group(0))
        return found

    return extract


@dataclass
class ConsolidationRule:
    """Variants whose name matches `pattern` belong to `base_type`."""
    pattern: Pattern
    base_type: str
    extract_attributes: Optional[Callable[[str], Dict[str, str]]] = None


def default_rules() -> List[ConsolidationRule]:
    return [
        ConsolidationRule(
            pattern=re.compile(r"\b(snack|pocket|wrap)s?\b", re.I),
            base_type="Snack",
            extract_attributes=_pattern_extractor(
                main_ingredient=r"\b(beef|chicken|pork|turkey|cheese|vegetable|veggie|fish|tuna|egg)\b",
                preparation_type=r"\b(baked|fried|frozen|grilled|steamed)\b",
            ),
        ),
        ConsolidationRule(
            pattern=re.compile(r"\bcorn ?dogs?\b", re.I),
            base_type="Corn Dog",
            extract_attributes=_pattern_extractor(
                main_ingredient=r"\b(beef|chicken|pork|turkey|cheese|veggie|vegetable)\b",
                preparation_type=r"\b(baked|fried|frozen|grilled)\b",
            ),
        ),
        ConsolidationRule(
            pattern=re.compile(r"\bcheese\b", re.I),
            base_type="Cheese",
            extract_attributes=_pattern_extractor(
                main_ingredient=r"\b(cheddar|mozzarella|parmesan|gouda|brie|feta|swiss|goat)\b",
                preparation_type=r"\b(aged|smoked|shredded|sliced|block|string)\b",
            ),
        ),
    ]


# ============================================================================
# Engine
# ============================================================================

@dataclass
class _Member:
    variant: ProductVariant
    attributes: Dict[str, Any]
    core: str
    score: float = 1.0


@dataclass
class _Group:
    base_type: str
    rule: Optional[ConsolidationRule] = None
    members: List[_Member] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def add(self, member: _Member) -> None:
        self.members.append(member)
        for key, value in defining_attributes(member.attributes).items():
            self.attributes.setdefault(key, value)


class ProductConsolidationEngine:
    """Groups product variants under shared base product types."""

    stage_name = "consolidation"

    def __init__(
        self,
        settings: Optional[ConsolidationSettings] = None,
        rules: Optional[List[ConsolidationRule]] = None,
    ):
        self.settings = settings or ConsolidationSettings()
        self.rules = default_rules() if rules is None else rules

    def consolidate(self, variants: List[ProductVariant]) -> StageResult[List[ProductGroup]]:
        """
        Group variants. On any internal error every variant becomes its own group.
        """
        if not variants:
            return StageResult(stage=self.stage_name, status=StageStatus.SUCCESS, output=[])
        try:
            groups = self._consolidate(variants)
        except Exception as e:
            logger.error(f"❌ Consolidation failed, returning ungrouped products: {e}", exc_info=True)
            fallback = [
                ProductGroup(
                    base_type=variant.name,
                    description=variant.description or "",
                    confidence=1.0,
                    variants=[variant],
                    attributes=dict(variant.attributes),
                )
                for variant in variants
            ]
            return StageResult(stage=self.stage_name, status=StageStatus.PARTIAL, output=fallback, error=str(e))

        logger.info(f"✅ Consolidated {len(variants)} products into {len(groups)} groups")
        return StageResult(
            stage=self.stage_name,
            status=StageStatus.SUCCESS,
            output=groups,
            metadata={"variants": len(variants), "groups": len(groups)},
        )

    def _member(self, variant: ProductVariant, rule: Optional[ConsolidationRule] = None) -> _Member:
        attributes: Dict[str, Any] = extract_attributes(variant.name, variant.description)
        if rule is not None and rule.extract_attributes is not None:
            attributes.update(rule.extract_attributes(f"{variant.name} {variant.description or ''}"))
        attributes.update({k: v for k, v in variant.attributes.items() if v not in (None, "")})
        return _Member(variant=variant, attributes=attributes, core=core_name(variant.name))

    def _match_rule(self, variant: ProductVariant) -> Optional[ConsolidationRule]:
        for rule in self.rules:
            if rule.pattern.search(variant.name):
                return rule
        return None

    def _score(self, member: _Member, group: _Group) -> Tuple[float, float]:
        """(score, compatibility) of a member against a group."""
        compatibility = attribute_compatibility(member.attributes, group.attributes)
        name_similarity = string_similarity(member.core, group.base_type)
        variant_similarity = max((string_similarity(member.core, m.core) for m in group.members), default=0.0)
        score = (
            self.settings.name_weight * name_similarity
            + self.settings.variant_weight * variant_similarity
            + self.settings.attribute_weight * compatibility
        )
        return score, compatibility

    def _best_group(self, member: _Member, groups: List[_Group]) -> Tuple[Optional[_Group], float]:
        best: Optional[_Group] = None
        best_score = 0.0
        for group in groups:
            score, compatibility = self._score(member, group)
            if compatibility < self.settings.compatibility_gate:
                continue
            if score > best_score:
                best, best_score = group, score
        if best is not None and best_score >= self.settings.similarity_threshold:
            return best, best_score
        return None, best_score

    def derive_base_type(self, name: str, attributes: Dict[str, Any]) -> str:
        """First 1-3 words of the core name, prefixed by material or form when not already present."""
        words = re.sub(r"[^\w\s]", " ", core_name(name)).split()[:3]
        if not words:
            words = re.sub(r"[^\w\s]", " ", name).split()[:3] or [name.strip()]
        base = " ".join(words)
        prefix = attributes.get("material") or attributes.get("form")
        if isinstance(prefix, str) and prefix and prefix.lower() not in base.lower():
            base = f"{prefix.title()} {base}"
        return base

    def _consolidate(self, variants: List[ProductVariant]) -> List[ProductGroup]:
        groups: List[_Group] = []
        rule_groups: Dict[str, _Group] = {}
        unmatched: List[_Member] = []

        for variant in variants:
            rule = self._match_rule(variant)
            member = self._member(variant, rule)
            if rule is None:
                unmatched.append(member)
                continue
            group = rule_groups.get(rule.base_type)
            if group is None:
                group = _Group(base_type=rule.base_type, rule=rule)
                rule_groups[rule.base_type] = group
                groups.append(group)
            group.add(member)

        for member in unmatched:
            group, score = (None, 0.0)
            if self.settings.enable_fuzzy_matching:
                group, score = self._best_group(member, groups)
            if group is None:
                base_type = self.derive_base_type(member.variant.name, member.attributes)
                for existing in groups:
                    if existing.rule is None and existing.base_type.lower() == base_type.lower():
                        existing_score, compatibility = self._score(member, existing)
                        if compatibility >= self.settings.compatibility_gate:
                            group, score = existing, existing_score
                            break
            if group is None:
                group = _Group(base_type=self.derive_base_type(member.variant.name, member.attributes))
                groups.append(group)
                score = 1.0
            member.score = score
            group.add(member)

        return [self._finish(group) for group in groups if group.members]

    def _finish(self, group: _Group) -> ProductGroup:
        merged = majority_vote([m.attributes for m in group.members], self.settings.majority_ratio)
        confidence = sum(m.score for m in group.members) / len(group.members)
        return ProductGroup(
            base_type=group.base_type,
            description=self.describe(group, merged),
            confidence=min(1.0, confidence),
            variants=[m.variant for m in group.members][: self.settings.max_variants_per_group],
            attributes=merged,
        )

    def describe(self, group: _Group, merged: Dict[str, Any]) -> str:
        if group.rule is not None:
            return f"{group.base_type} - Various preparations and flavors"

        details = []
        if merged.get("material"):
            details.append(f"made of {merged['material']}")
        if merged.get("quality"):
            details.append(str(merged["quality"]))
        if merged.get("form"):
            details.append(f"in {merged['form']} form")
        description = group.base_type
        if details:
            description += " - " + ", ".join(details)

        def _varies(key: str) -> bool:
            return len({str(m.attributes[key]).lower() for m in group.members if key in m.attributes}) > 1

        options = []
        if _varies("size"):
            options.append("different sizes")
        if _varies("color"):
            options.append("various colors")
        if _varies("packaging"):
            options.append("multiple packaging options")
        if options:
            description += f" (available in {', '.join(options)})"
        return description
