"""
Analysis pipeline for MediAnalyst.

Drives one wizard run through its steps:

    Idle -> SearchingProduct -> ReviewProduct -> AnalyzingIngredients
         -> AnalyzingPathology -> AnalyzingPharmacology -> ReviewReport
         -> Chatting

Each step is an immutable state value holding exactly the results that
exist at that point, so a pharmacology result without a pathology
result cannot be represented. Every generative call is attempted once;
a failure reverts to the last review step and is reported to the user.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Dict, Iterable, Optional, Tuple, Union
from uuid import uuid4

from medianalyst.config import settings
from medianalyst.core import prompts
from medianalyst.core.errors import (
    AnalysisStepFailure,
    ChatSendFailure,
    InvalidRequestError,
    MediAnalystError,
    PipelineBusyError,
    PipelineStateError,
    RecordNotFoundError,
    SearchFailure,
)
from medianalyst.core.llm_engine import LLMEngine, get_llm_engine
from medianalyst.models.schemas import (
    ChatMessage,
    ChatRole,
    DiagramAnalysis,
    IngredientAnalysis,
    MedicalAnalysis,
    PipelineStep,
    ProductInfo,
    RunStateResponse,
)
from medianalyst.services.chat_session import ChatSession
from medianalyst.services.history_store import HistoryStore, get_history_store
from medianalyst.services.report_generator import (
    ReportGenerator,
    get_report_generator,
    report_filename,
)
from medianalyst.utils.logger import get_logger, log_context

logger = get_logger("analysis_pipeline")

EDITABLE_PRODUCT_FIELDS = frozenset(
    name for name in ProductInfo.model_fields if name != "sources"
)


# =============================================================================
# States
# =============================================================================

@dataclass(frozen=True)
class CompletedReport:
    """The four analysis results of one product."""

    product: ProductInfo
    ingredient_analysis: IngredientAnalysis
    pathology: DiagramAnalysis
    pharmacology: DiagramAnalysis


@dataclass(frozen=True)
class Idle:
    step: ClassVar[PipelineStep] = PipelineStep.IDLE


@dataclass(frozen=True)
class SearchingProduct:
    step: ClassVar[PipelineStep] = PipelineStep.SEARCHING_PRODUCT
    brand: str
    product_name: str


@dataclass(frozen=True)
class ReviewProduct:
    step: ClassVar[PipelineStep] = PipelineStep.REVIEW_PRODUCT
    product: ProductInfo


@dataclass(frozen=True)
class AnalyzingIngredients:
    step: ClassVar[PipelineStep] = PipelineStep.ANALYZING_INGREDIENTS
    product: ProductInfo


@dataclass(frozen=True)
class AnalyzingPathology:
    step: ClassVar[PipelineStep] = PipelineStep.ANALYZING_PATHOLOGY
    product: ProductInfo
    ingredient_analysis: IngredientAnalysis


@dataclass(frozen=True)
class AnalyzingPharmacology:
    step: ClassVar[PipelineStep] = PipelineStep.ANALYZING_PHARMACOLOGY
    product: ProductInfo
    ingredient_analysis: IngredientAnalysis
    pathology: DiagramAnalysis


@dataclass(frozen=True)
class ReviewReport:
    step: ClassVar[PipelineStep] = PipelineStep.REVIEW_REPORT
    report: CompletedReport


@dataclass(frozen=True)
class Chatting:
    step: ClassVar[PipelineStep] = PipelineStep.CHATTING
    report: CompletedReport
    session: ChatSession = field(compare=False)
    record_id: Optional[str] = None


PipelineState = Union[
    Idle,
    SearchingProduct,
    ReviewProduct,
    AnalyzingIngredients,
    AnalyzingPathology,
    AnalyzingPharmacology,
    ReviewReport,
    Chatting,
]


def _describe(error: Exception) -> str:
    return error.message if isinstance(error, MediAnalystError) else str(error)


# =============================================================================
# Pipeline
# =============================================================================

class AnalysisPipeline:
    """
    One run of the analysis wizard.

    Owns its current state and, once chatting, its chat session. A single
    busy flag gates all user-triggered actions: nothing new starts while
    a generative call is outstanding.
    """

    def __init__(
        self,
        engine: LLMEngine,
        history: HistoryStore,
        report_generator: Optional[ReportGenerator] = None,
        run_id: Optional[str] = None,
    ):
        self.run_id = run_id or str(uuid4())
        self.engine = engine
        self.history = history
        self.report_generator = report_generator or get_report_generator()
        self.created_at = datetime.now(timezone.utc)
        self._state: PipelineState = Idle()
        self._busy = False

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def step(self) -> PipelineStep:
        return self._state.step

    @property
    def busy(self) -> bool:
        return self._busy

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _exclusive(self, action: str):
        if self._busy:
            raise PipelineBusyError(
                f"Cannot {action} while step '{self.step.value}' is in progress"
            )
        self._busy = True
        try:
            with log_context(run_id=self.run_id, action=action):
                yield
        finally:
            self._busy = False

    def _expect(self, action: str, *allowed: type):
        if not isinstance(self._state, allowed):
            raise PipelineStateError(
                f"Cannot {action} during step '{self.step.value}'"
            )
        return self._state

    def _transition(self, new_state: PipelineState) -> None:
        logger.info(
            "Pipeline transition",
            run_id=self.run_id,
            from_step=self._state.step.value,
            to_step=new_state.step.value
        )
        self._state = new_state

    def _open_chat(self, report: CompletedReport, transcript: Iterable[ChatMessage]) -> ChatSession:
        instruction = prompts.build_chat_instruction(
            report.product,
            report.ingredient_analysis,
            report.pathology.mermaid_code,
            report.pharmacology.mermaid_code,
        )
        try:
            handle = self.engine.create_chat_session(instruction)
        except MediAnalystError:
            raise
        except Exception as e:
            logger.error("Chat session could not be opened", run_id=self.run_id, error=str(e))
            raise ChatSendFailure(f"Could not open chat session: {_describe(e)}") from e
        return ChatSession(handle, transcript)

    def _save(self, report: CompletedReport, transcript: Iterable[ChatMessage]) -> MedicalAnalysis:
        record = self.history.new_record(
            product=report.product,
            ingredient_analysis=report.ingredient_analysis,
            pathology=report.pathology,
            pharmacology=report.pharmacology,
            chat_history=list(transcript),
        )
        self.history.append(record)
        return record

    # -------------------------------------------------------------------------
    # Wizard actions
    # -------------------------------------------------------------------------

    async def search(self, brand: str, product: str) -> ProductInfo:
        """
        Look up a product and move to product review.

        Args:
            brand: Brand name, must not be blank
            product: Product name, must not be blank

        Returns:
            The product facts found

        Raises:
            SearchFailure: The lookup failed; the run is back to Idle
        """
        with self._exclusive("search"):
            self._expect("search", Idle, ReviewProduct)
            brand, product = (brand or "").strip(), (product or "").strip()
            if not brand or not product:
                raise InvalidRequestError("Brand name and product name are both required")

            self._transition(SearchingProduct(brand, product))
            try:
                info = await self.engine.search_product(brand, product)
            except Exception as e:
                self._transition(Idle())
                logger.error("Product search failed", run_id=self.run_id, error=_describe(e))
                raise SearchFailure(
                    f"Failed to retrieve product information: {_describe(e)}"
                ) from e
            except BaseException:
                # Cancelled: the run must not stay in the searching step
                self._transition(Idle())
                raise

            self._transition(ReviewProduct(info))
            return info

    def update_product(self, **fields: str) -> ProductInfo:
        """
        Overwrite product fields while reviewing the search result.

        Fields left as None are untouched.

        Returns:
            The updated product
        """
        if self._busy:
            raise PipelineBusyError("Cannot edit the product while a step is in progress")
        state = self._expect("edit the product", ReviewProduct)

        unknown = set(fields) - EDITABLE_PRODUCT_FIELDS
        if unknown:
            raise InvalidRequestError(f"Unknown product fields: {', '.join(sorted(unknown))}")

        product = state.product.model_copy(deep=True)
        for name, value in fields.items():
            if value is None:
                continue
            if not isinstance(value, str):
                raise InvalidRequestError(f"Field '{name}' must be text")
            setattr(product, name, value)

        self._state = ReviewProduct(product)
        logger.info("Product edited", run_id=self.run_id, fields=sorted(k for k, v in fields.items() if v is not None))
        return product

    async def confirm_product(self) -> CompletedReport:
        """
        Run ingredient, pathology and pharmacology analysis in sequence.

        The pathology step only sees the indications text. On any failure
        the run returns to product review with the reviewed product kept.

        Raises:
            AnalysisStepFailure: Names the step that failed
        """
        with self._exclusive("confirm the product"):
            state = self._expect("confirm the product", ReviewProduct)
            product = state.product

            try:
                self._transition(AnalyzingIngredients(product))
                ingredients = await self.engine.analyze_ingredients(product)

                self._transition(AnalyzingPathology(product, ingredients))
                pathology = await self.engine.analyze_pathology(product.indications)

                self._transition(AnalyzingPharmacology(product, ingredients, pathology))
                pharmacology = await self.engine.analyze_pharmacology(pathology, ingredients, product)
            except Exception as e:
                failed_step = self.step.value
                self._transition(ReviewProduct(product))
                logger.error(
                    "Analysis step failed",
                    run_id=self.run_id,
                    step=failed_step,
                    error=_describe(e)
                )
                raise AnalysisStepFailure(
                    failed_step,
                    f"Analysis interrupted during {failed_step}: {_describe(e)}"
                ) from e
            except BaseException:
                logger.warning("Analysis cancelled", run_id=self.run_id, step=self.step.value)
                self._transition(ReviewProduct(product))
                raise

            report = CompletedReport(product, ingredients, pathology, pharmacology)
            self._transition(ReviewReport(report))
            return report

    def confirm_report(self) -> MedicalAnalysis:
        """
        Accept the report, open the chat and save the analysis.

        Returns:
            The history record that was saved
        """
        with self._exclusive("confirm the report"):
            state = self._expect("confirm the report", ReviewReport)
            report = state.report

            greeting = ChatMessage(role=ChatRole.MODEL, content=prompts.build_greeting(report.product))
            session = self._open_chat(report, [greeting])
            record = self._save(report, session.transcript)

            self._transition(Chatting(report, session, record.id))
            return record

    async def send_message(self, text: str) -> ChatMessage:
        """
        Send a chat message about the finished report.

        Delivery failures do not raise; they appear as a model message.
        """
        with self._exclusive("send a message"):
            state = self._expect("send a message", Chatting)
            return await state.session.send(text)

    def load_from_history(self, record_id: str) -> MedicalAnalysis:
        """
        Restore a saved analysis and continue its chat.

        The chat is re-seeded from the record's diagrams and the
        transcript is reset to the saved one.
        """
        with self._exclusive("load a saved analysis"):
            record = self.history.get(record_id)
            if record is None:
                raise RecordNotFoundError(f"History record not found: {record_id}")

            report = CompletedReport(
                record.product.model_copy(deep=True),
                record.ingredient_analysis,
                record.pathology,
                record.pharmacology,
            )
            session = self._open_chat(report, record.chat_history)
            self._transition(Chatting(report, session, record.id))

            logger.info("Analysis restored from history", run_id=self.run_id, record_id=record.id)
            return record

    def save_to_history(self) -> MedicalAnalysis:
        """Save the current report, with the transcript so far, as a new record."""
        with self._exclusive("save the report"):
            state = self._expect("save the report", ReviewReport, Chatting)
            if isinstance(state, Chatting):
                record = self._save(state.report, state.session.transcript)
                self._state = Chatting(state.report, state.session, record.id)
            else:
                record = self._save(state.report, [])
            return record

    def render_report(self) -> Tuple[str, str]:
        """
        Render the downloadable report of the current run.

        Returns:
            Tuple of (filename, html)
        """
        state = self._expect("render the report", ReviewReport, Chatting)
        report = state.report
        html = self.report_generator.generate_html(
            report.product,
            report.ingredient_analysis,
            report.pathology,
            report.pharmacology,
        )
        return report_filename(report.product), html

    def reset(self) -> None:
        """Start over with a new analysis."""
        if self._busy:
            raise PipelineBusyError("Cannot reset while a step is in progress")
        self._transition(Idle())

    def snapshot(self) -> RunStateResponse:
        """Current step and every result available in it."""
        state = self._state
        view = RunStateResponse(run_id=self.run_id, step=state.step, busy=self._busy)

        report = getattr(state, "report", None)
        if report is not None:
            view.product = report.product
            view.ingredient_analysis = report.ingredient_analysis
            view.pathology = report.pathology
            view.pharmacology = report.pharmacology
        else:
            view.product = getattr(state, "product", None)
            view.ingredient_analysis = getattr(state, "ingredient_analysis", None)
            view.pathology = getattr(state, "pathology", None)

        if isinstance(state, Chatting):
            view.chat_history = state.session.transcript
            view.record_id = state.record_id
        return view


# =============================================================================
# Registry
# =============================================================================

class PipelineRegistry:
    """
    Keeps the wizard runs of this process by run id.

    Collaborators are resolved lazily so the registry can be created
    before the generative client is configured.
    """

    def __init__(
        self,
        engine: Optional[LLMEngine] = None,
        history: Optional[HistoryStore] = None,
        report_generator: Optional[ReportGenerator] = None,
        max_runs: Optional[int] = None,
    ):
        self._engine = engine
        self._history = history
        self._report_generator = report_generator
        self._pipelines: Dict[str, AnalysisPipeline] = {}
        self.max_runs = max_runs or settings.max_active_runs

    @property
    def engine(self) -> LLMEngine:
        return self._engine or get_llm_engine()

    @property
    def history(self) -> HistoryStore:
        return self._history or get_history_store()

    @property
    def report_generator(self) -> ReportGenerator:
        return self._report_generator or get_report_generator()

    def create(self) -> AnalysisPipeline:
        """Open a new run in the Idle step."""
        pipeline = AnalysisPipeline(
            engine=self.engine,
            history=self.history,
            report_generator=self.report_generator,
        )
        self._evict()
        self._pipelines[pipeline.run_id] = pipeline
        logger.info("Pipeline created", run_id=pipeline.run_id)
        return pipeline

    def _evict(self) -> None:
        # Runs are kept in creation order; busy ones are never dropped
        idle = [run_id for run_id, p in self._pipelines.items() if not p.busy]
        excess = len(self._pipelines) - self.max_runs + 1
        for run_id in idle[:max(excess, 0)]:
            del self._pipelines[run_id]
            logger.info("Pipeline evicted", run_id=run_id)

    def get(self, run_id: str) -> Optional[AnalysisPipeline]:
        """Get a run by id."""
        return self._pipelines.get(run_id)

    def remove(self, run_id: str) -> bool:
        """Discard a run."""
        if run_id in self._pipelines:
            del self._pipelines[run_id]
            logger.info("Pipeline removed", run_id=run_id)
            return True
        return False


# Lazy-loaded singleton
_registry: Optional[PipelineRegistry] = None


def get_pipeline_registry() -> PipelineRegistry:
    """Get or create the process-wide pipeline registry."""
    global _registry
    if _registry is None:
        _registry = PipelineRegistry()
    return _registry
