"""
Tests for model response normalization.
"""

from types import SimpleNamespace

import pytest

from medianalyst.core.errors import ImageGenerationFailure, ParseFailure
from medianalyst.core.response_parser import (
    strip_code_fences,
    parse_json_object,
    parse_model,
    extract_grounding_sources,
    extract_inline_image,
)
from medianalyst.models.schemas import (
    DiagramAnalysis,
    IngredientAnalysis,
    InsuranceCategory,
    ProductInfo,
    ProductType,
)


class TestStripCodeFences:
    def test_removes_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text_untouched(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'

    def test_none_is_empty(self):
        assert strip_code_fences(None) == ""


class TestParseJsonObject:
    """Test JSON decoding of model replies."""

    def test_fenced_object(self):
        assert parse_json_object('```json\n{"explanation": "x"}\n```') == {"explanation": "x"}

    def test_empty_reply_fails(self):
        with pytest.raises(ParseFailure):
            parse_json_object("")

    def test_malformed_reply_fails(self):
        with pytest.raises(ParseFailure):
            parse_json_object('{"explanation": "unterminated')

    def test_non_object_fails(self):
        with pytest.raises(ParseFailure):
            parse_json_object("[1, 2, 3]")


class TestParseModel:
    """Test validation into typed records."""

    def test_diagram_analysis(self):
        result = parse_model(
            '{"explanation": "**病机**", "mermaidCode": "```mermaid\\ngraph TD\\nA-->B\\n```"}',
            DiagramAnalysis,
        )
        assert result.explanation == "**病机**"
        assert result.mermaid_code == "graph TD\nA-->B"

    def test_missing_required_field_fails(self):
        with pytest.raises(ParseFailure):
            parse_model('{"explanation": "only text"}', DiagramAnalysis)

    def test_optional_fields_may_be_absent(self):
        result = parse_model('{"westernTable": "|a|b|"}', IngredientAnalysis)
        assert result.western_table == "|a|b|"
        assert result.tcm_table is None

    def test_blank_optional_fields_become_absent(self):
        result = parse_model('{"tcmTable": "  ", "westernTable": "|a|"}', IngredientAnalysis)
        assert result.tcm_table is None

    def test_defaults_fill_missing_names(self):
        reply = '{"ingredients": "麻黄", "indications": "风寒感冒", "insuranceCategory": "医保乙类"}'
        result = parse_model(reply, ProductInfo, brandName="同仁堂", productName="小青龙汤")

        assert result.brand_name == "同仁堂"
        assert result.product_name == "小青龙汤"
        assert result.classification == ProductType.UNKNOWN
        assert result.insurance_category == InsuranceCategory.CLASS_B

    def test_product_without_indications_fails(self):
        with pytest.raises(ParseFailure):
            parse_model('{"ingredients": "麻黄"}', ProductInfo, brandName="a", productName="b")


class TestGroundingSources:
    """Test citation extraction."""

    def test_collects_web_chunks(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(
            grounding_metadata=SimpleNamespace(grounding_chunks=[
                SimpleNamespace(web=SimpleNamespace(title="说明书", uri="https://example.com/a")),
                SimpleNamespace(web=None),
                SimpleNamespace(web=SimpleNamespace(title=None, uri="https://example.com/b")),
            ])
        )])

        sources = extract_grounding_sources(response)

        assert [s.uri for s in sources] == ["https://example.com/a", "https://example.com/b"]
        assert sources[0].title == "说明书"
        assert sources[1].title == "https://example.com/b"

    def test_no_metadata(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(grounding_metadata=None)])
        assert extract_grounding_sources(response) == []


class TestInlineImage:
    def test_returns_first_image(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[
            SimpleNamespace(inline_data=None, text="here you go"),
            SimpleNamespace(inline_data=SimpleNamespace(data=b"png-bytes")),
        ]))])
        assert extract_inline_image(response) == b"png-bytes"

    def test_no_image_fails(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[
            SimpleNamespace(inline_data=None, text="sorry"),
        ]))])
        with pytest.raises(ImageGenerationFailure):
            extract_inline_image(response)
