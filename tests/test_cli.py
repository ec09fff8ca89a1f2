"""
Tests for the command-line entry point.
"""

import json
from unittest.mock import patch

from tradewizard.cli import main
from tradewizard.pipeline import AnalysisPipeline


class TestConsolidateCommand:
    """Test grouping products from a JSON file."""

    def test_consolidate_list_file(self, tmp_path, capsys):
        path = tmp_path / "products.json"
        path.write_text(json.dumps([
            {"name": "Red Wine 750ml"},
            {"name": "Red Wine 1.5L"},
            {"name": "Organic Honey 500g"},
        ]), encoding="utf-8")

        code = main(["consolidate", str(path)])

        assert code == 0
        groups = json.loads(capsys.readouterr().out)
        assert [g["base_type"] for g in groups] == ["Red Wine", "Organic Honey"]

    def test_consolidate_products_object(self, tmp_path, capsys):
        path = tmp_path / "products.json"
        path.write_text(json.dumps({"products": [{"name": "Corn Dog Classic"}]}), encoding="utf-8")

        code = main(["consolidate", str(path)])

        assert code == 0
        groups = json.loads(capsys.readouterr().out)
        assert len(groups) == 1
        assert len(groups[0]["variants"]) == 1


class TestCategorizeCommand:
    """Test sorting products from a JSON file into trade categories."""

    def test_categorize_file(self, tmp_path, capsys, fake_acquisition, pipeline_factory):
        path = tmp_path / "products.json"
        path.write_text(json.dumps([
            {"name": "Red Wine 750ml", "description": "Dry red wine"},
            {"name": "Cotton T-Shirt", "description": "Unisex cotton shirt"},
        ]), encoding="utf-8")
        pipeline = pipeline_factory(fake_acquisition("<html></html>"))

        with patch.object(AnalysisPipeline, "from_env", return_value=pipeline):
            code = main(["categorize", str(path)])

        assert code == 0
        categories = json.loads(capsys.readouterr().out)
        assert [c["category_id"] for c in categories] == ["beverages", "ready_to_wear"]


class TestAnalyzeCommand:
    """Test website analysis from the command line."""

    def test_analyze_writes_output_file(self, tmp_path, honey_html, fake_acquisition, pipeline_factory):
        pipeline = pipeline_factory(fake_acquisition(honey_html))
        output = tmp_path / "result.json"

        with patch.object(AnalysisPipeline, "from_env", return_value=pipeline):
            code = main(["analyze", "organic-honey.com", "--output", str(output)])

        assert code == 0
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["source_url"] == "https://organic-honey.com"
        assert data["status"] == "partial"

    def test_analyze_profile_to_stdout(self, capsys, honey_html, fake_acquisition, pipeline_factory):
        pipeline = pipeline_factory(fake_acquisition(honey_html))

        with patch.object(AnalysisPipeline, "from_env", return_value=pipeline):
            code = main(["analyze", "organic-honey.com", "--profile", "--no-cache"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["business_name"] == "Organic Honey"

    def test_invalid_url_exit_code(self, fake_acquisition, pipeline_factory):
        pipeline = pipeline_factory(fake_acquisition("<html></html>"))

        with patch.object(AnalysisPipeline, "from_env", return_value=pipeline):
            code = main(["analyze", "ftp://example.com"])

        assert code == 2
