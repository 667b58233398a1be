from __future__ import annotations

from src.cardexpenses.importers.base import StatementImporter
from src.cardexpenses.importers.card_movements import CardMovementsImporter


def default_importers() -> list[StatementImporter]:
    return [CardMovementsImporter()]
