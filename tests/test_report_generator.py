"""
Tests for the standalone HTML report.
"""

from medianalyst.models.schemas import IngredientAnalysis, ProductSource
from medianalyst.services.report_generator import (
    compose_ingredient_markdown,
    report_filename,
)

from conftest import make_product, make_ingredients, PATHOLOGY, PHARMACOLOGY


class TestIngredientMarkdown:
    """Test section inclusion and ordering."""

    def test_fixed_order(self):
        md = compose_ingredient_markdown(make_ingredients())

        positions = [
            md.index("### 中医解读"),
            md.index("**君臣佐使**"),
            md.index("**组方功效**"),
            md.index("### 西医/现代药理"),
            md.index("### 中西协同"),
        ]
        assert positions == sorted(positions)

    def test_only_non_empty_sections(self):
        md = compose_ingredient_markdown(IngredientAnalysis(western_table="|a|b|"))
        assert md == "### 西医/现代药理\n|a|b|"

    def test_empty_analysis(self):
        assert compose_ingredient_markdown(IngredientAnalysis()) == ""


class TestGenerateHtml:
    """Test the rendered document."""

    def test_western_only_omits_traditional_sections(self, report_generator):
        html = report_generator.generate_html(
            make_product(),
            IngredientAnalysis(western_table="|名称|成分|\n|---|---|\n|布洛芬|异丁苯丙酸|"),
            PATHOLOGY,
            PHARMACOLOGY,
        )

        assert "西医/现代药理" in html
        assert "布洛芬" in html
        assert "中医解读" not in html
        assert "君臣佐使" not in html
        assert "组方功效" not in html
        assert "中西协同" not in html

    def test_contains_all_parts(self, report_generator):
        html = report_generator.generate_html(
            make_product(), make_ingredients(), PATHOLOGY, PHARMACOLOGY
        )

        assert "同仁堂 小青龙汤 - 深度解读报告" in html
        assert "OTC甲类" in html
        assert "甲类" in html
        assert "内科用药" in html
        assert PATHOLOGY.explanation in html
        assert PHARMACOLOGY.explanation in html
        assert "A[外感风寒] --&gt; B[肺气失宣]" in html
        assert "marked.min.js" in html
        assert "mermaid.min.js" in html

    def test_section_order(self, report_generator):
        html = report_generator.generate_html(
            make_product(), make_ingredients(), PATHOLOGY, PHARMACOLOGY
        )
        order = [
            html.index("1. 产品基本信息"),
            html.index("md-ingredients"),
            html.index("md-pathology"),
            html.index("病理流程图"),
            html.index("md-pharmacology"),
            html.index("药理流程图"),
        ]
        assert order == sorted(order)

    def test_content_is_escaped(self, report_generator):
        product = make_product(indications="<script>alert(1)</script>")
        html = report_generator.generate_html(
            product, make_ingredients(), PATHOLOGY, PHARMACOLOGY
        )
        assert "<script>alert(1)</script>" not in html

    def test_sources_listed(self, report_generator):
        product = make_product(sources=[ProductSource(title="药品说明书", uri="https://example.com/insert")])
        html = report_generator.generate_html(
            product, make_ingredients(), PATHOLOGY, PHARMACOLOGY
        )
        assert "https://example.com/insert" in html

    def test_save_html(self, report_generator):
        product = make_product()
        path = report_generator.save_html("<html></html>", product)

        assert path.exists()
        assert path.name.endswith("同仁堂_小青龙汤_解读报告.html")


def test_report_filename():
    assert report_filename(make_product()) == "同仁堂_小青龙汤_解读报告.html"
    assert report_filename(make_product(product_name="a/b")) == "同仁堂_a_b_解读报告.html"
