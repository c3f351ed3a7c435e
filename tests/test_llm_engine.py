"""
Tests for the Gemini engine using a scripted client.
"""

import asyncio
import json
from types import SimpleNamespace

import pytest

from medianalyst.core.errors import GenerationUnavailableError, ImageGenerationFailure, ParseFailure
from medianalyst.core.llm_engine import LLMEngine
from medianalyst.models.schemas import InsuranceCategory, ProductType

from conftest import make_product, make_ingredients, PATHOLOGY


class FakeModels:
    """Stands in for client.aio.models."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    async def generate_content(self, model, contents, config=None):
        self.requests.append({"model": model, "contents": contents, "config": config})
        return self.responses.pop(0)


class FakeChat:
    def __init__(self, reply):
        self.reply = reply
        self.messages = []

    async def send_message(self, text):
        self.messages.append(text)
        return SimpleNamespace(text=self.reply)


class FakeChats:
    def __init__(self):
        self.created = []

    def create(self, model, config=None):
        chat = FakeChat("可以在饭后服用。")
        self.created.append({"model": model, "config": config, "chat": chat})
        return chat


def text_response(text, chunks=None):
    return SimpleNamespace(
        text=text,
        candidates=[SimpleNamespace(
            grounding_metadata=SimpleNamespace(grounding_chunks=chunks or []),
            content=SimpleNamespace(parts=[]),
        )],
    )


def make_engine(*responses):
    models = FakeModels(responses)
    chats = FakeChats()
    client = SimpleNamespace(aio=SimpleNamespace(models=models, chats=chats))
    return LLMEngine(client=client), models, chats


class TestAvailability:
    def test_no_key_means_unavailable(self):
        engine = LLMEngine(api_key="")

        assert not engine.is_available()
        assert engine.get_status()["available"] is False
        with pytest.raises(GenerationUnavailableError):
            asyncio.run(engine.analyze_pathology("风寒感冒"))

    def test_chat_requires_client(self):
        with pytest.raises(GenerationUnavailableError):
            LLMEngine(api_key="").create_chat_session("context")


class TestSearchProduct:
    """Test the grounded product lookup."""

    def test_parses_product_and_sources(self):
        reply = json.dumps({
            "brandName": "同仁堂",
            "productName": "小青龙汤",
            "ingredients": "麻黄、桂枝、芍药",
            "indications": "解表化饮，止咳平喘",
            "classification": "中成药",
            "attribute": "OTC甲类",
            "drugCategory": "内科用药",
            "insuranceCategory": "甲类",
            "origin": "《伤寒论》",
        }, ensure_ascii=False)
        chunks = [SimpleNamespace(web=SimpleNamespace(title="说明书", uri="https://example.com/x"))]
        engine, models, _ = make_engine(text_response(f"```json\n{reply}\n```", chunks))

        info = asyncio.run(engine.search_product("同仁堂", "小青龙汤"))

        assert info.classification == ProductType.TCM
        assert info.insurance_category == InsuranceCategory.CLASS_A
        assert [s.uri for s in info.sources] == ["https://example.com/x"]
        request = models.requests[0]
        assert request["model"] == engine.search_model
        assert request["config"].tools[0].google_search is not None

    def test_missing_names_fall_back_to_input(self):
        reply = json.dumps({"ingredients": "布洛芬", "indications": "头痛"}, ensure_ascii=False)
        engine, _, _ = make_engine(text_response(reply))

        info = asyncio.run(engine.search_product("芬必得", "布洛芬缓释胶囊"))

        assert info.brand_name == "芬必得"
        assert info.product_name == "布洛芬缓释胶囊"
        assert info.insurance_category == InsuranceCategory.NONE

    def test_unparseable_reply(self):
        engine, _, _ = make_engine(text_response("抱歉，未找到该产品。"))
        with pytest.raises(ParseFailure):
            asyncio.run(engine.search_product("x", "y"))


class TestAnalysis:
    """Test the three structured analysis calls."""

    def test_pathology_prompt_only_has_indications(self):
        reply = json.dumps({"explanation": "病机", "mermaidCode": "graph TD\nA-->B"})
        engine, models, _ = make_engine(text_response(reply))
        product = make_product()

        result = asyncio.run(engine.analyze_pathology(product.indications))

        assert result.mermaid_code == "graph TD\nA-->B"
        contents = models.requests[0]["contents"]
        assert product.indications in contents
        assert product.product_name not in contents
        assert "麻黄" not in contents
        assert models.requests[0]["config"].response_mime_type == "application/json"

    def test_ingredients(self):
        reply = json.dumps({"westernTable": "|布洛芬|", "tcmTable": ""})
        engine, _, _ = make_engine(text_response(reply))

        result = asyncio.run(engine.analyze_ingredients(make_product(ingredients="布洛芬")))

        assert result.western_table == "|布洛芬|"
        assert result.tcm_table is None

    def test_pharmacology_uses_analysis_model(self):
        reply = json.dumps({"explanation": "机制", "mermaidCode": "graph TD\nM-->B"})
        engine, models, _ = make_engine(text_response(reply))

        asyncio.run(engine.analyze_pharmacology(PATHOLOGY, make_ingredients(), make_product()))

        request = models.requests[0]
        assert request["model"] == engine.analysis_model
        assert PATHOLOGY.mermaid_code in request["contents"]


class TestEditImage:
    def test_returns_image_bytes(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[
            SimpleNamespace(inline_data=SimpleNamespace(data=b"edited")),
        ]))])
        engine, models, _ = make_engine(response)

        data = asyncio.run(engine.edit_image(b"source", "image/png", "添加复古滤镜"))

        assert data == b"edited"
        assert models.requests[0]["model"] == engine.image_model
        assert models.requests[0]["contents"][1] == "添加复古滤镜"

    def test_text_only_reply_fails(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[
            SimpleNamespace(inline_data=None, text="I cannot edit this image."),
        ]))])
        engine, _, _ = make_engine(response)

        with pytest.raises(ImageGenerationFailure):
            asyncio.run(engine.edit_image(b"source", "image/png", "remove background"))


class TestChat:
    def test_session_carries_instruction(self):
        engine, _, chats = make_engine()

        handle = engine.create_chat_session("产品：同仁堂 小青龙汤")
        reply = asyncio.run(handle.send("饭前还是饭后？"))

        created = chats.created[0]
        assert created["model"] == engine.chat_model
        assert created["config"].system_instruction == "产品：同仁堂 小青龙汤"
        assert created["chat"].messages == ["饭前还是饭后？"]
        assert reply == "可以在饭后服用。"
