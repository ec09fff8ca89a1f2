"""
HTML helpers for the extraction stage.

- html_to_text: text projection sent to the completion model
- extract_product_candidates: heuristic product names straight from markup
- looks_like_navigation / looks_like_code: rejectors for bogus product names
- business_name_from_url / infer_business_type: domain-derived fallbacks
"""

import logging
import re
from typing import Any, List
from urllib.parse import urlparse

import extruct
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

NAVIGATION_TERMS = {"home", "cart", "login", "register", "search", "next", "previous"}

SECOND_LEVEL_LABELS = {"co", "com", "org", "net", "ac", "gov", "edu"}

_CODE_PATTERNS = [
    # HTML attribute fragments
    re.compile(r"^(class|id|style|href|src|alt|placeholder|value|type|name)\s*=", re.I),
    re.compile(r"^(required|data-)", re.I),
    re.compile(r"^\s*<"),
    # JavaScript
    re.compile(r"\$\("),
    re.compile(r"\bfunction\b"),
    re.compile(r"^(var|const|let|import|export|return)\s", re.I),
    re.compile(r"\b(if|for|while)\s*\("),
    re.compile(r"\$\{"),
    re.compile(r"^(null|undefined|true|false|NaN|Infinity)$", re.I),
    # CSS selectors and at-rules
    re.compile(r"^[.#][\w-]+"),
    re.compile(r"^\[[\w-]+"),
    re.compile(r"^@(media|import|font-face|keyframes)", re.I),
    re.compile(r"^(active|comments?)$|^filter-", re.I),
    re.compile(r"\w\(\s*\)"),
]

_CODE_CHARS = set("<>{}$=;`")

_PRODUCT_MARKER = re.compile(r"product", re.I)
_TITLE_MARKER = re.compile(r"title|name", re.I)
_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def html_to_text(html: str, max_chars: int = 20000) -> str:
    """Visible text of a page: scripts and styles dropped, whitespace collapsed, truncated."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    text = re.sub(r"\s+", " ", soup.get_text(" ")).strip()
    return text[:max_chars]


def looks_like_navigation(name: str) -> bool:
    return name.strip().lower() in NAVIGATION_TERMS


def looks_like_code(name: str) -> bool:
    """True for markup, CSS or script fragments that leaked into a name."""
    stripped = name.strip()
    if len(stripped) < 3:
        return True
    if any(ch in _CODE_CHARS for ch in stripped):
        return True
    return any(pattern.search(stripped) for pattern in _CODE_PATTERNS)


def is_plausible_product_name(name: str) -> bool:
    return bool(name) and not looks_like_navigation(name) and not looks_like_code(name)


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _container_title(container) -> str:
    title = container.find(_HEADINGS) or container.find(["span", "div", "a", "p"], class_=_TITLE_MARKER)
    if title is not None:
        return _clean(title.get_text(" "))
    if container.name in ("li", "a"):
        text = _clean(container.get_text(" "))
        if len(text) <= 80:
            return text
    return ""


def _json_ld_product_names(node: Any) -> List[str]:
    names: List[str] = []
    if isinstance(node, list):
        for item in node:
            names.extend(_json_ld_product_names(item))
    elif isinstance(node, dict):
        node_type = node.get("@type")
        types = node_type if isinstance(node_type, list) else [node_type]
        if "Product" in types and isinstance(node.get("name"), str):
            names.append(node["name"])
        offers = node.get("offers")
        for offer in offers if isinstance(offers, list) else [offers]:
            if isinstance(offer, dict):
                item = offer.get("itemOffered")
                if isinstance(item, dict) and isinstance(item.get("name"), str):
                    names.append(item["name"])
        for key, value in node.items():
            if key != "offers" and isinstance(value, (dict, list)):
                names.extend(_json_ld_product_names(value))
    return names


def extract_product_candidates(html: str, url: str = "", limit: int = 15) -> List[str]:
    """
    Heuristic product names from raw HTML.

    Looks at product-classed containers and product links, schema.org Product
    JSON-LD, and product / og:title meta tags. Candidates are deduplicated
    (case-insensitive, first occurrence wins), filtered through the navigation
    and code-like rejectors and capped at `limit`.
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "lxml")
    raw: List[str] = []

    for container in soup.find_all(["div", "article", "section", "li"], class_=_PRODUCT_MARKER):
        raw.append(_container_title(container))
    for container in soup.find_all(id=_PRODUCT_MARKER):
        raw.append(_container_title(container))
    for link in soup.find_all("a", class_=_PRODUCT_MARKER):
        raw.append(_container_title(link))

    try:
        data = extruct.extract(html, base_url=url or None, syntaxes=["json-ld"], errors="ignore")
        raw.extend(_json_ld_product_names(data.get("json-ld", [])))
    except Exception as e:
        logger.warning(f"⚠️  JSON-LD extraction failed for {url}: {e}")

    for meta in soup.find_all("meta"):
        key = (meta.get("name") or meta.get("property") or "").lower()
        if "product" in key or key == "og:title":
            raw.append(meta.get("content") or "")

    candidates: List[str] = []
    seen = set()
    for name in raw:
        name = _clean(name)
        if not name or name.lower() in seen or not is_plausible_product_name(name):
            continue
        seen.add(name.lower())
        candidates.append(name)
        if len(candidates) >= limit:
            break
    return candidates


def business_name_from_url(url: str) -> str:
    """
    Title-cased name from the registrable domain label.

    https://www.organic-honey.co.uk/shop -> "Organic Honey"
    """
    host = urlparse(url if "//" in url else f"//{url}").hostname or ""
    labels = [label for label in host.lower().split(".") if label]
    if labels and labels[0] == "www":
        labels = labels[1:]
    if len(labels) > 1:
        labels = labels[:-1]
    if len(labels) > 1 and labels[-1] in SECOND_LEVEL_LABELS:
        labels = labels[:-1]
    if not labels:
        return "Unknown Business"
    words = [word for word in re.split(r"[-_]+", labels[-1]) if word]
    return " ".join(word.capitalize() for word in words) or "Unknown Business"


_BUSINESS_TYPE_HINTS = [
    (("shop", "store"), "Retail / E-commerce"),
    (("food", "restaurant", "cafe"), "Food & Beverage"),
    (("tech", "software", "app"), "Technology"),
    (("travel", "tour", "vacation"), "Travel & Tourism"),
    (("health", "medical", "care"), "Healthcare"),
]


def infer_business_type(url: str) -> str:
    lowered = url.lower()
    for keywords, business_type in _BUSINESS_TYPE_HINTS:
        if any(keyword in lowered for keyword in keywords):
            return business_type
    return "General Business"
