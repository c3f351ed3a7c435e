"""
Shared fixtures: a scripted stand-in for the generative engine and a
history store in a temporary directory.
"""

import asyncio
from typing import Dict, List, Optional

import pytest

from medianalyst.models.schemas import (
    ProductInfo,
    IngredientAnalysis,
    DiagramAnalysis,
    ProductType,
    ProductAttribute,
    InsuranceCategory,
)
from medianalyst.services.analysis_pipeline import AnalysisPipeline
from medianalyst.services.history_store import HistoryStore
from medianalyst.services.report_generator import ReportGenerator


def make_product(**overrides) -> ProductInfo:
    data = dict(
        brand_name="同仁堂",
        product_name="小青龙汤",
        ingredients="麻黄, 桂枝",
        indications="风寒感冒",
        classification=ProductType.TCM,
        attribute=ProductAttribute.OTC_A,
        drug_category="内科用药 > 解表剂",
        insurance_category=InsuranceCategory.CLASS_A,
        origin="《伤寒论》",
    )
    data.update(overrides)
    return ProductInfo(**data)


def make_ingredients(**overrides) -> IngredientAnalysis:
    data = dict(
        tcm_table="|名称|类别|\n|---|---|\n|麻黄|君药|",
        tcm_relations="麻黄为君，桂枝为臣",
        tcm_synergy="解表散寒，温肺化饮",
        western_table="|名称|成分|\n|---|---|\n|麻黄|麻黄碱|",
        combined_synergy="麻黄碱与桂皮醛协同",
    )
    data.update(overrides)
    return IngredientAnalysis(**data)


PATHOLOGY = DiagramAnalysis(
    explanation="**外感风寒** 导致 **肺气失宣**",
    mermaid_code="graph TD\nA[外感风寒] --> B[肺气失宣]",
)

PHARMACOLOGY = DiagramAnalysis(
    explanation="**麻黄** 通过 **宣肺** 作用于 **肺气失宣**",
    mermaid_code="graph TD\nA[外感风寒] --> B[肺气失宣]\nM{{麻黄}} --宣肺--> B",
)


class FakeChatHandle:
    """Chat handle that answers from a script or fails on demand."""

    def __init__(self, instruction: str):
        self.instruction = instruction
        self.sent: List[str] = []
        self.error: Optional[Exception] = None
        self.reply: Optional[str] = None
        self.gate: Optional[asyncio.Event] = None

    async def send(self, text: str) -> str:
        self.sent.append(text)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply if self.reply is not None else f"关于「{text}」的回答"


class FakeEngine:
    """
    Records every call and returns canned results.

    A call whose name is in ``gates`` waits for that event before answering.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.product = make_product()
        self.ingredients = make_ingredients()
        self.pathology = PATHOLOGY
        self.pharmacology = PHARMACOLOGY
        self.chat_handles: List[FakeChatHandle] = []
        self.edited_image = b"\x89PNG\r\n\x1a\nedited"

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    async def _pass_gate(self, name: str):
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    @property
    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def is_available(self) -> bool:
        return True

    async def search_product(self, brand: str, product: str) -> ProductInfo:
        self._record("search_product", brand, product)
        await self._pass_gate("search_product")
        return self.product.model_copy(update={"brand_name": brand, "product_name": product})

    async def analyze_ingredients(self, product: ProductInfo) -> IngredientAnalysis:
        self._record("analyze_ingredients", product)
        await self._pass_gate("analyze_ingredients")
        return self.ingredients

    async def analyze_pathology(self, indications: str) -> DiagramAnalysis:
        self._record("analyze_pathology", indications)
        await self._pass_gate("analyze_pathology")
        return self.pathology

    async def analyze_pharmacology(self, pathology, ingredients, product) -> DiagramAnalysis:
        self._record("analyze_pharmacology", pathology, ingredients, product)
        await self._pass_gate("analyze_pharmacology")
        return self.pharmacology

    async def edit_image(self, image_bytes: bytes, mime_type: str, instruction: str) -> bytes:
        self._record("edit_image", mime_type, instruction)
        await self._pass_gate("edit_image")
        return self.edited_image

    def create_chat_session(self, system_instruction: str) -> FakeChatHandle:
        self._record("create_chat_session", system_instruction)
        handle = FakeChatHandle(system_instruction)
        self.chat_handles.append(handle)
        return handle


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def history(tmp_path):
    return HistoryStore(path=tmp_path / "medi_analyst_history.json", limit=20)


@pytest.fixture
def report_generator(tmp_path):
    return ReportGenerator(output_dir=tmp_path / "outputs")


@pytest.fixture
def pipeline(engine, history, report_generator):
    return AnalysisPipeline(engine=engine, history=history, report_generator=report_generator)
