"""
History persistence for MediAnalyst.

Completed analyses are kept as one JSON list under a single well-known
key (a file named after it in the data directory). The list is bounded:
only the most recent records survive.
"""

import json
import os
import tempfile
import time
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from medianalyst.config import settings
from medianalyst.core.errors import HistoryLoadCorruption
from medianalyst.models.schemas import (
    ChatMessage,
    DiagramAnalysis,
    IngredientAnalysis,
    MedicalAnalysis,
    ProductInfo,
)
from medianalyst.utils.logger import get_logger

logger = get_logger("history_store")

_RECORDS = TypeAdapter(List[MedicalAnalysis])


class HistoryStore:
    """
    Bounded, most-recent-first list of saved analyses.

    Every mutation rewrites the whole file; there is a single writer.
    Unreadable data is logged and treated as an empty history.
    """

    def __init__(self, path: Optional[Path] = None, limit: Optional[int] = None):
        self.path = Path(path) if path is not None else settings.history_path
        self.limit = limit if limit is not None else settings.history_limit

    def _read(self) -> List[MedicalAnalysis]:
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
            if not raw.strip():
                return []
            return _RECORDS.validate_python(json.loads(raw))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            corruption = HistoryLoadCorruption(f"Stored history is unreadable: {e}")
            logger.warning(
                "Discarding corrupt history",
                path=str(self.path),
                error_code=corruption.error_code,
                error=corruption.message
            )
            return []

    def _write(self, records: List[MedicalAnalysis]) -> None:
        payload = json.dumps(
            [r.model_dump(mode="json", by_alias=True) for r in records],
            ensure_ascii=False,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def new_record(
        self,
        product: ProductInfo,
        ingredient_analysis: IngredientAnalysis,
        pathology: DiagramAnalysis,
        pharmacology: DiagramAnalysis,
        chat_history: List[ChatMessage],
    ) -> MedicalAnalysis:
        """
        Build a record keyed by its creation time.

        The id is the creation timestamp in milliseconds, bumped forward
        if a record with that id already exists.
        """
        timestamp = int(time.time() * 1000)
        taken = {r.id for r in self._read()}
        while str(timestamp) in taken:
            timestamp += 1

        return MedicalAnalysis(
            id=str(timestamp),
            timestamp=timestamp,
            product=product.model_copy(deep=True),
            ingredient_analysis=ingredient_analysis,
            pathology=pathology,
            pharmacology=pharmacology,
            chat_history=list(chat_history),
        )

    def append(self, record: MedicalAnalysis) -> List[MedicalAnalysis]:
        """
        Save a record as the most recent entry.

        Returns:
            The stored list after eviction of the oldest entries
        """
        records = [record] + [r for r in self._read() if r.id != record.id]
        records = records[: self.limit]
        self._write(records)

        logger.info(
            "Analysis saved to history",
            record_id=record.id,
            product=record.product.product_name,
            size=len(records)
        )
        return records

    def list(self) -> List[MedicalAnalysis]:
        """All saved records, most recent first."""
        return self._read()

    def get(self, record_id: str) -> Optional[MedicalAnalysis]:
        """Find a record by id."""
        for record in self._read():
            if record.id == record_id:
                return record
        return None


# Lazy-loaded singleton
_history_store: Optional[HistoryStore] = None


def get_history_store() -> HistoryStore:
    """Get or create history store singleton."""
    global _history_store
    if _history_store is None:
        _history_store = HistoryStore()
    return _history_store
