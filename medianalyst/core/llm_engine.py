"""
MediAnalyst - Generative AI Engine

Wraps the Gemini API behind the operations the analysis wizard needs:
grounded product search, ingredient analysis, pathology and
pharmacology diagrams, image editing and chat sessions.

Every call is attempted exactly once. Failures propagate to the caller,
which decides how the wizard recovers.
"""

import time
from typing import Optional, Dict, Any

from google import genai
from google.genai import types

from medianalyst.config import settings
from medianalyst.core import prompts
from medianalyst.core.errors import GenerationUnavailableError
from medianalyst.core.response_parser import (
    parse_model,
    extract_grounding_sources,
    extract_inline_image,
)
from medianalyst.models.schemas import (
    ProductInfo,
    IngredientAnalysis,
    DiagramAnalysis,
)
from medianalyst.utils.logger import get_logger

logger = get_logger("llm_engine")


class GeminiChatHandle:
    """Server-side chat conversation that accumulates its own context."""

    def __init__(self, chat: Any, model: str):
        self._chat = chat
        self.model = model

    async def send(self, text: str) -> str:
        """Send a user message and return the reply text."""
        response = await self._chat.send_message(text)
        return response.text or ""


class LLMEngine:
    """
    Gemini integration for product analysis.

    Outputs are generated content for informational purposes only and
    are not checked for medical correctness.
    """

    def __init__(self, client: Optional[Any] = None, api_key: Optional[str] = None):
        """
        Initialize the engine.

        Args:
            client: Preconfigured genai client (used as-is when given)
            api_key: Overrides settings.gemini_api_key
        """
        self.client = client
        self.search_model = settings.search_model
        self.analysis_model = settings.analysis_model
        self.chat_model = settings.chat_model
        self.image_model = settings.image_model
        if self.client is None:
            self._initialize_client(api_key if api_key is not None else settings.gemini_api_key)

    def _initialize_client(self, api_key: str) -> None:
        """Create the Gemini client when an API key is configured."""
        if not api_key:
            logger.info("Gemini API key not configured, generation disabled")
            return

        try:
            self.client = genai.Client(api_key=api_key)
            logger.info("Gemini client initialized", analysis_model=self.analysis_model)
        except Exception as e:
            logger.warning("Gemini client unavailable", reason=str(e))

    def _require_client(self) -> Any:
        if self.client is None:
            raise GenerationUnavailableError(
                "Generative AI service is not configured. Set GEMINI_API_KEY."
            )
        return self.client

    async def _generate(
        self,
        operation: str,
        model: str,
        contents: Any,
        config: Optional[types.GenerateContentConfig] = None,
    ) -> Any:
        """Issue a single generate_content call and log its latency."""
        client = self._require_client()
        start_time = time.time()

        response = await client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )

        logger.info(
            "Generation completed",
            operation=operation,
            model=model,
            elapsed_ms=int((time.time() - start_time) * 1000)
        )
        return response

    # =========================================================================
    # Analysis operations
    # =========================================================================

    async def search_product(self, brand: str, product: str) -> ProductInfo:
        """
        Look up a product on the web and extract its facts.

        Args:
            brand: Brand name typed by the user
            product: Product name typed by the user

        Returns:
            ProductInfo with any grounding citations attached
        """
        response = await self._generate(
            "search_product",
            self.search_model,
            prompts.build_search_prompt(brand, product),
            types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())]
            ),
        )

        info = parse_model(
            response.text,
            ProductInfo,
            brandName=brand,
            productName=product,
        )
        info.sources = extract_grounding_sources(response)
        return info

    async def analyze_ingredients(self, product: ProductInfo) -> IngredientAnalysis:
        """Produce the ingredient tables and synergy descriptions."""
        response = await self._generate(
            "analyze_ingredients",
            self.analysis_model,
            prompts.build_ingredient_prompt(product),
            types.GenerateContentConfig(response_mime_type="application/json"),
        )
        return parse_model(response.text, IngredientAnalysis)

    async def analyze_pathology(self, indications: str) -> DiagramAnalysis:
        """
        Explain the disease described by the indications text.

        Args:
            indications: The product's indications, and nothing else

        Returns:
            DiagramAnalysis with a pathology-only diagram
        """
        response = await self._generate(
            "analyze_pathology",
            self.analysis_model,
            prompts.build_pathology_prompt(indications),
            types.GenerateContentConfig(response_mime_type="application/json"),
        )
        return parse_model(response.text, DiagramAnalysis)

    async def analyze_pharmacology(
        self,
        pathology: DiagramAnalysis,
        ingredients: IngredientAnalysis,
        product: ProductInfo,
    ) -> DiagramAnalysis:
        """Map the product's ingredients onto the pathology diagram."""
        response = await self._generate(
            "analyze_pharmacology",
            self.analysis_model,
            prompts.build_pharmacology_prompt(pathology, ingredients, product),
            types.GenerateContentConfig(response_mime_type="application/json"),
        )
        return parse_model(response.text, DiagramAnalysis)

    # =========================================================================
    # Image editing
    # =========================================================================

    async def edit_image(self, image_bytes: bytes, mime_type: str, instruction: str) -> bytes:
        """
        Edit an image according to a text instruction.

        Args:
            image_bytes: Source image
            mime_type: MIME type of the source image
            instruction: What to change

        Returns:
            Bytes of the edited image
        """
        response = await self._generate(
            "edit_image",
            self.image_model,
            [
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                instruction,
            ],
        )
        return extract_inline_image(response)

    # =========================================================================
    # Chat
    # =========================================================================

    def create_chat_session(self, system_instruction: str) -> GeminiChatHandle:
        """Open a chat whose every turn is grounded in the system instruction."""
        client = self._require_client()
        chat = client.aio.chats.create(
            model=self.chat_model,
            config=types.GenerateContentConfig(system_instruction=system_instruction),
        )
        logger.info("Chat session created", model=self.chat_model)
        return GeminiChatHandle(chat, self.chat_model)

    def is_available(self) -> bool:
        """Check if the generative service is configured."""
        return self.client is not None

    def get_status(self) -> Dict[str, Any]:
        """Get engine status information."""
        return {
            "available": self.is_available(),
            "search_model": self.search_model,
            "analysis_model": self.analysis_model,
            "chat_model": self.chat_model,
            "image_model": self.image_model,
        }


# Module-level singleton
_engine_instance: Optional[LLMEngine] = None


def get_llm_engine() -> LLMEngine:
    """Get or create singleton engine instance."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = LLMEngine()
    return _engine_instance
