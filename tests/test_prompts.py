"""
Tests for prompt construction.
"""

import json

from medianalyst.core import prompts
from medianalyst.models.schemas import IngredientAnalysis

from conftest import make_product, make_ingredients, PATHOLOGY


class TestPathologyPrompt:
    """The pathology prompt only ever sees the indications."""

    def test_contains_indications(self):
        text = prompts.build_pathology_prompt("风寒感冒")
        assert "风寒感冒" in text

    def test_withholds_product_and_ingredients(self):
        product = make_product(indications="风寒感冒", ingredients="麻黄, 桂枝", product_name="小青龙汤")
        text = prompts.build_pathology_prompt(product.indications)

        assert "麻黄" not in text
        assert "桂枝" not in text
        assert "小青龙汤" not in text
        assert product.brand_name not in text

    def test_requests_mermaid_graph(self):
        text = prompts.build_pathology_prompt("风寒感冒")
        assert "graph TD" in text
        assert "mermaidCode" in text


class TestSearchPrompt:
    """Test the grounded search instruction."""

    def test_embeds_brand_and_product(self):
        text = prompts.build_search_prompt("同仁堂", "小青龙汤")
        assert "同仁堂" in text
        assert "小青龙汤" in text

    def test_insurance_must_not_be_guessed(self):
        text = prompts.build_search_prompt("同仁堂", "小青龙汤")
        assert "甲类" in text and "乙类" in text and "无" in text


class TestIngredientPrompt:
    def test_embeds_ingredients_and_classification(self):
        text = prompts.build_ingredient_prompt(make_product())
        assert "麻黄, 桂枝" in text
        assert "中成药" in text
        assert "westernTable" in text


class TestPharmacologyPrompt:
    """Test the pharmacology instruction."""

    def test_embeds_pathology_diagram_and_ingredients(self):
        text = prompts.build_pharmacology_prompt(PATHOLOGY, make_ingredients(), make_product())

        assert PATHOLOGY.mermaid_code in text
        assert "小青龙汤" in text
        assert "麻黄碱" in text

    def test_ingredient_context_is_truncated(self):
        ingredients = IngredientAnalysis(western_table="药" * 500)
        context = prompts.serialize_ingredient_context(ingredients, 100)
        assert len(context) == 100

    def test_context_uses_camel_case_keys(self):
        context = prompts.serialize_ingredient_context(IngredientAnalysis(western_table="x"), 1000)
        assert json.loads(context) == {"westernTable": "x"}


class TestChatInstruction:
    def test_contains_full_context(self):
        product = make_product()
        text = prompts.build_chat_instruction(
            product, make_ingredients(), "graph TD\nP", "graph TD\nQ"
        )
        assert "同仁堂 小青龙汤" in text
        assert "graph TD\nP" in text
        assert "graph TD\nQ" in text
        assert "tcmRelations" in text

    def test_greeting_names_product(self):
        assert "小青龙汤" in prompts.build_greeting(make_product())
