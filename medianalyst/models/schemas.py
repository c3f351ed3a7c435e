"""
Pydantic schemas for MediAnalyst.

Defines the domain records produced by the analysis wizard and the
request/response models of the API. Domain records use camelCase
aliases because that is the shape of the model's JSON replies and of
the persisted history.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================

class ProductType(str, Enum):
    """Drug classification."""
    TCM = "中成药"
    CHEMICAL = "化学药"
    BIOLOGICAL = "生物药"
    COMBINED = "中西结合"
    UNKNOWN = "未知"


class ProductAttribute(str, Enum):
    """Dispensing attribute."""
    RX = "处方药"
    OTC_A = "OTC甲类"
    OTC_B = "OTC乙类"
    DUAL = "处方药/OTC双跨"
    SUPPLEMENT = "保健品"
    UNKNOWN = "未知"


class InsuranceCategory(str, Enum):
    """National reimbursement list tier."""
    CLASS_A = "甲类"
    CLASS_B = "乙类"
    NONE = "无"


class ChatRole(str, Enum):
    """Author of a chat message."""
    USER = "user"
    MODEL = "model"


class PipelineStep(str, Enum):
    """Steps of the analysis wizard."""
    IDLE = "idle"
    SEARCHING_PRODUCT = "searching_product"
    REVIEW_PRODUCT = "review_product"
    ANALYZING_INGREDIENTS = "analyzing_ingredients"
    ANALYZING_PATHOLOGY = "analyzing_pathology"
    ANALYZING_PHARMACOLOGY = "analyzing_pharmacology"
    REVIEW_REPORT = "review_report"
    CHATTING = "chatting"


_TYPE_ALIASES = {
    "traditional-medicine": ProductType.TCM,
    "tcm": ProductType.TCM,
    "chemical": ProductType.CHEMICAL,
    "biological": ProductType.BIOLOGICAL,
    "combined": ProductType.COMBINED,
    "unknown": ProductType.UNKNOWN,
}

_ATTRIBUTE_ALIASES = {
    "prescription": ProductAttribute.RX,
    "rx": ProductAttribute.RX,
    "over-the-counter-class-a": ProductAttribute.OTC_A,
    "over-the-counter-class-b": ProductAttribute.OTC_B,
    "dual-status": ProductAttribute.DUAL,
    "双跨": ProductAttribute.DUAL,
    "supplement": ProductAttribute.SUPPLEMENT,
    "unknown": ProductAttribute.UNKNOWN,
}

_INSURANCE_ALIASES = {
    "甲类": InsuranceCategory.CLASS_A,
    "甲": InsuranceCategory.CLASS_A,
    "class-a": InsuranceCategory.CLASS_A,
    "a": InsuranceCategory.CLASS_A,
    "乙类": InsuranceCategory.CLASS_B,
    "乙": InsuranceCategory.CLASS_B,
    "class-b": InsuranceCategory.CLASS_B,
    "b": InsuranceCategory.CLASS_B,
    "无": InsuranceCategory.NONE,
    "none": InsuranceCategory.NONE,
}

_MERMAID_FENCE = re.compile(r"^```(?:mermaid)?\s*|\s*```$")


def _coerce_enum(value, enum_cls, aliases: dict):
    """
    Map known spellings onto enum members and keep anything else as text.

    Only a null means unknown; a blank string is kept as entered.
    """
    if value is None:
        return enum_cls.UNKNOWN
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    try:
        return enum_cls(text)
    except ValueError:
        return aliases.get(text.lower(), text)


def normalize_insurance_category(value) -> InsuranceCategory:
    """
    Normalize a reimbursement tier.

    Anything that is not clearly class A or class B counts as "none",
    mirroring the rule that the tier must never be guessed.
    """
    if isinstance(value, InsuranceCategory):
        return value
    text = str(value or "").strip()
    if text.lower() in _INSURANCE_ALIASES:
        return _INSURANCE_ALIASES[text.lower()]
    has_a, has_b = "甲" in text, "乙" in text
    if has_a and not has_b:
        return InsuranceCategory.CLASS_A
    if has_b and not has_a:
        return InsuranceCategory.CLASS_B
    return InsuranceCategory.NONE


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Domain Records
# =============================================================================

class ProductSource(CamelModel):
    """A web citation attached to a search result."""

    title: str = ""
    uri: str


class ProductInfo(CamelModel):
    """Product facts found by the search step and reviewed by the user."""

    model_config = ConfigDict(validate_assignment=True)

    brand_name: str
    product_name: str
    ingredients: str
    indications: str
    classification: Union[ProductType, str] = ProductType.UNKNOWN
    attribute: Union[ProductAttribute, str] = ProductAttribute.UNKNOWN
    drug_category: str = ""
    insurance_category: InsuranceCategory = InsuranceCategory.NONE
    origin: str = ""
    sources: List[ProductSource] = Field(default_factory=list)

    @field_validator("classification", mode="before")
    @classmethod
    def _classification(cls, value):
        return _coerce_enum(value, ProductType, _TYPE_ALIASES)

    @field_validator("attribute", mode="before")
    @classmethod
    def _attribute(cls, value):
        return _coerce_enum(value, ProductAttribute, _ATTRIBUTE_ALIASES)

    @field_validator("insurance_category", mode="before")
    @classmethod
    def _insurance(cls, value):
        return normalize_insurance_category(value)

    @field_validator("drug_category", "origin", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return "" if value is None else value


class IngredientAnalysis(CamelModel):
    """Markdown sections describing the product's ingredients."""

    tcm_table: Optional[str] = None
    tcm_relations: Optional[str] = None
    tcm_synergy: Optional[str] = None
    western_table: Optional[str] = None
    combined_synergy: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class DiagramAnalysis(CamelModel):
    """Markdown explanation plus the Mermaid source of its diagram."""

    explanation: str
    mermaid_code: str

    @field_validator("mermaid_code")
    @classmethod
    def _strip_fence(cls, value: str) -> str:
        return _MERMAID_FENCE.sub("", value.strip()).strip()


class ChatMessage(CamelModel):
    """One turn of the follow-up conversation."""

    role: ChatRole
    content: str


class MedicalAnalysis(CamelModel):
    """A completed analysis as saved in the history."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int = Field(description="Creation time in epoch milliseconds")
    product: ProductInfo
    ingredient_analysis: IngredientAnalysis
    pathology: DiagramAnalysis
    pharmacology: DiagramAnalysis
    chat_history: List[ChatMessage] = Field(default_factory=list)


# =============================================================================
# API Requests
# =============================================================================

class SearchRequest(BaseModel):
    """Brand and product name typed by the user."""

    brand: str = Field(description="Brand name, e.g. 同仁堂")
    product: str = Field(description="Product name, e.g. 小青龙汤")


class ProductUpdateRequest(CamelModel):
    """Fields the user overwrites while reviewing search results."""

    brand_name: Optional[str] = None
    product_name: Optional[str] = None
    ingredients: Optional[str] = None
    indications: Optional[str] = None
    classification: Optional[str] = None
    attribute: Optional[str] = None
    drug_category: Optional[str] = None
    insurance_category: Optional[str] = None
    origin: Optional[str] = None


class ChatRequest(BaseModel):
    """A user message for the follow-up chat."""

    message: str


# =============================================================================
# API Responses
# =============================================================================

class CreateRunResponse(BaseModel):
    """Response after a new wizard run is opened."""

    run_id: str = Field(description="Identifier of the wizard run")
    step: PipelineStep


class RunStateResponse(BaseModel):
    """Everything the client needs to render the current wizard step."""

    run_id: str
    step: PipelineStep
    busy: bool = False
    product: Optional[ProductInfo] = None
    ingredient_analysis: Optional[IngredientAnalysis] = None
    pathology: Optional[DiagramAnalysis] = None
    pharmacology: Optional[DiagramAnalysis] = None
    chat_history: List[ChatMessage] = Field(default_factory=list)
    record_id: Optional[str] = Field(
        default=None,
        description="History record saved for this run, if any"
    )


class ChatResponse(BaseModel):
    """Reply to a chat message along with the full transcript."""

    reply: ChatMessage
    chat_history: List[ChatMessage]


class HistoryItem(BaseModel):
    """Summary of a saved analysis."""

    id: str
    timestamp: int
    brand_name: str
    product_name: str
    indications: str


class HistoryListResponse(BaseModel):
    """Saved analyses, most recent first."""

    items: List[HistoryItem]
    total: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    version: str = Field(description="Application version")
    generation_available: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Error type")
    message: str = Field(description="Human-readable error message")
    error_code: str = Field(description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
