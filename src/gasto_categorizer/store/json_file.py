import json
import os

from pydantic import ValidationError

from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import PendingConfirmation
from gasto_categorizer.store.memory import InMemoryConfirmationRepository

logger = get_logger(__name__)


class JsonFileConfirmationRepository(InMemoryConfirmationRepository):
    """In-memory repository mirrored to a JSON file after every write."""

    def __init__(self, data_path: str = "confirmations.json") -> None:
        super().__init__()
        self.data_path = data_path
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                raw = json.load(f)
            rows = [PendingConfirmation.model_validate(item) for item in raw]
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            logger.warning("[STORE] Ignoring unreadable %s: %s", self.data_path, exc)
            return
        self._rows = {row.id: row for row in rows}
        logger.info("[STORE] Loaded %s confirmations from %s.", len(rows), self.data_path)

    def save(self) -> None:
        payload = [row.model_dump(mode="json") for row in self._rows.values()]
        tmp_path = f"{self.data_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.data_path)

    def _after_write(self) -> None:
        self.save()
