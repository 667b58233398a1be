from __future__ import annotations

from typing import Any, Iterable

from src.cardexpenses.importers.base import StatementImporter
from src.cardexpenses.models import ExpenseRow
from src.cardexpenses.normalize import parse_amount, parse_date


DATE_COLUMN = "Data operazione"
CARD_COLUMN = "Carta"
DESCRIPTION_COLUMN = "Descrizione"
AMOUNT_COLUMN = "Importo in euro"
CONTRACT_COLUMNS = (DATE_COLUMN, CARD_COLUMN, DESCRIPTION_COLUMN, AMOUNT_COLUMN)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Card numbers typed into a numeric cell come back as 1234.0
        return str(int(value))
    return str(value).strip()


class CardMovementsImporter(StatementImporter):
    """Card movement exports: "Data operazione", "Carta", "Descrizione", "Importo in euro"."""

    format_name = "card_movements"

    def detect(self, headers: Iterable[str]) -> bool:
        hs = {h.strip() for h in headers}
        return bool(hs.intersection(CONTRACT_COLUMNS))

    def parse_rows(self, *, rows: list[dict[str, Any]], id_prefix: str) -> list[ExpenseRow]:
        out: list[ExpenseRow] = []
        for index, r in enumerate(rows):
            out.append(
                ExpenseRow(
                    id=f"{id_prefix}-{index}",
                    date=parse_date(r.get(DATE_COLUMN)),
                    amount=parse_amount(r.get(AMOUNT_COLUMN)),
                    card_label=_cell_text(r.get(CARD_COLUMN)),
                    movement=_cell_text(r.get(DESCRIPTION_COLUMN)),
                )
            )
        return out
