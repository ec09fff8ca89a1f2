"""
Unit tests for HTML projection, heuristic product discovery and name rejectors.
"""

import pytest

from tradewizard.html_content import (
    business_name_from_url,
    extract_product_candidates,
    html_to_text,
    infer_business_type,
    is_plausible_product_name,
    looks_like_code,
    looks_like_navigation,
)


class TestHtmlToText:
    """Test the text projection."""

    def test_scripts_and_styles_removed(self, honey_html):
        text = html_to_text(honey_html)

        assert "Organic Honey 500g" in text
        assert "tracking" not in text
        assert "color: red" not in text

    def test_whitespace_collapsed_and_truncated(self):
        text = html_to_text("<p>one\n\n   two</p><p>three</p>", max_chars=9)

        assert text == "one two t"

    def test_empty_input(self):
        assert html_to_text("") == ""


class TestRejectors:
    """Test navigation and code-like name filters."""

    @pytest.mark.parametrize("name", ["Home", "cart", " Login ", "Next", "previous"])
    def test_navigation_terms(self, name):
        assert looks_like_navigation(name)

    @pytest.mark.parametrize("name", [
        "class=btn-primary",
        ".nav-item",
        "#header",
        "function init",
        "$(document)",
        "<div>",
        "null",
        "@media screen",
        "toggle()",
        "ab",
    ])
    def test_code_like_names(self, name):
        assert looks_like_code(name)

    @pytest.mark.parametrize("name", [
        "Organic Honey 500g",
        "Maple Syrup (Grade A)",
        "Men's Cotton T-Shirt",
    ])
    def test_real_product_names_pass(self, name):
        assert is_plausible_product_name(name)


class TestProductCandidates:
    """Test heuristic product discovery."""

    def test_product_container_heading(self, honey_html):
        assert extract_product_candidates(honey_html, "https://organic-honey.com") == ["Organic Honey 500g"]

    def test_json_ld_products(self):
        html = """
        <html><head>
          <script type="application/ld+json">
            {"@context": "https://schema.org", "@type": "Product", "name": "Maple Syrup"}
          </script>
        </head><body><p>Welcome</p></body></html>
        """

        assert "Maple Syrup" in extract_product_candidates(html, "https://maple.example")

    def test_meta_tags(self):
        html = '<html><head><meta property="og:title" content="Cedar Cutting Board"></head><body></body></html>'

        assert extract_product_candidates(html) == ["Cedar Cutting Board"]

    def test_navigation_and_duplicates_filtered(self):
        html = """
        <ul>
          <li class="product-item"><h3>Wool Blanket</h3></li>
          <li class="product-item"><h3>wool blanket</h3></li>
          <li class="product-item"><h3>Next</h3></li>
          <li class="product-item"><span class="product-title">Linen Throw</span></li>
        </ul>
        """

        assert extract_product_candidates(html) == ["Wool Blanket", "Linen Throw"]

    def test_limit_respected(self):
        items = "".join(f'<div class="product"><h4>Candle No {i}</h4></div>' for i in range(20))

        assert len(extract_product_candidates(f"<html><body>{items}</body></html>", limit=5)) == 5


class TestDomainNaming:
    """Test domain-derived business names and types."""

    @pytest.mark.parametrize("url,expected", [
        ("https://www.organic-honey.co.uk/shop", "Organic Honey"),
        ("example.com", "Example"),
        ("http://shop.maple_farms.com/products", "Maple Farms"),
        ("https://localhost", "Localhost"),
    ])
    def test_business_name_from_url(self, url, expected):
        assert business_name_from_url(url) == expected

    def test_infer_business_type(self):
        assert infer_business_type("https://bestcafe.com") == "Food & Beverage"
        assert infer_business_type("https://gadgetstore.com") == "Retail / E-commerce"
        assert infer_business_type("https://acme.io") == "General Business"
