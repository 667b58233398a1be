from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Optional

from src.cardexpenses.errors import ReportClosedError, UnknownEntityError
from src.cardexpenses.models import EXPENSE_CATEGORIES, Attachment, ExpenseReport, ExpenseRow
from src.utils.time import utcnow_ms


_UNSET: Any = object()


@dataclass(frozen=True)
class ReportBook:
    """
    Immutable snapshot of every card's reports, addressed as card id -> report id -> row id.

    Each edit returns a new book; untouched reports and rows are shared with the previous
    snapshot, edited ones are rebuilt. Report lists are kept most-recent-first.
    """

    cards: Mapping[int, tuple[ExpenseReport, ...]] = field(default_factory=dict)
    categories: tuple[str, ...] = EXPENSE_CATEGORIES

    def reports(self, card_id: int) -> list[ExpenseReport]:
        return list(self.cards.get(card_id, ()))

    def report(self, card_id: int, report_id: str) -> ExpenseReport:
        for r in self.cards.get(card_id, ()):
            if r.id == report_id:
                return r
        raise UnknownEntityError(f"Report {report_id} not found for card {card_id}")

    def _with(self, card_id: int, reports: Iterable[ExpenseReport]) -> "ReportBook":
        cards = dict(self.cards)
        cards[card_id] = tuple(reports)
        return replace(self, cards=cards)

    def with_reports(self, card_id: int, reports: Iterable[ExpenseReport]) -> "ReportBook":
        return self._with(card_id, reports)

    def add_report(self, card_id: int, report: ExpenseReport) -> "ReportBook":
        return self._with(card_id, (report, *self.cards.get(card_id, ())))

    def update_report(
        self, card_id: int, report_id: str, updater: Callable[[ExpenseReport], ExpenseReport]
    ) -> "ReportBook":
        self.report(card_id, report_id)
        return self._with(
            card_id, (updater(r) if r.id == report_id else r for r in self.cards.get(card_id, ()))
        )

    def update_row(
        self,
        card_id: int,
        report_id: str,
        row_id: str,
        *,
        category: Optional[str] = _UNSET,
        detail_description: Optional[str] = _UNSET,
        attachment: Optional[Attachment] = _UNSET,
    ) -> "ReportBook":
        report = self.report(card_id, report_id)
        if report.closed:
            raise ReportClosedError(f"Report {report_id} is closed; rows can no longer be edited")
        report.row(row_id)
        changes: dict[str, Any] = {}
        if category is not _UNSET:
            cat = (category or "").strip()
            if cat and cat not in self.categories:
                raise ValueError(f"Unknown category {cat!r}; expected one of: {', '.join(self.categories)}")
            changes["category"] = cat
        if detail_description is not _UNSET:
            changes["detail_description"] = detail_description or ""
        if attachment is not _UNSET:
            changes["attachment"] = attachment

        def _apply(r: ExpenseReport) -> ExpenseReport:
            rows: list[ExpenseRow] = [replace(row, **changes) if row.id == row_id else row for row in r.rows]
            return replace(r, rows=tuple(rows))

        return self.update_report(card_id, report_id, _apply)

    def set_attachment(self, card_id: int, report_id: str, row_id: str, attachment: Attachment) -> "ReportBook":
        return self.update_row(card_id, report_id, row_id, attachment=attachment)

    def remove_attachment(self, card_id: int, report_id: str, row_id: str) -> "ReportBook":
        return self.update_row(card_id, report_id, row_id, attachment=None)

    def close_report(self, card_id: int, report_id: str) -> "ReportBook":
        return self.update_report(card_id, report_id, lambda r: replace(r, closed=True))

    def mark_saved(self, card_id: int, report_id: str, *, now: Optional[dt.datetime] = None) -> "ReportBook":
        saved_at = now or utcnow_ms()
        return self.update_report(card_id, report_id, lambda r: replace(r, saved_at=saved_at))

    def delete_report(self, card_id: int, report_id: str) -> "ReportBook":
        self.report(card_id, report_id)
        return self._with(card_id, (r for r in self.cards.get(card_id, ()) if r.id != report_id))

    def drop_card(self, card_id: int) -> "ReportBook":
        cards = {k: v for k, v in self.cards.items() if k != card_id}
        return replace(self, cards=cards)
