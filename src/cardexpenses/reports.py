from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from src.cardexpenses.models import (
    UNCATEGORIZED,
    BalanceChain,
    CategoryTotal,
    ExpenseReport,
    ExpenseRow,
    MonthlySummary,
    RowView,
    Totals,
)
from src.cardexpenses.normalize import format_amount, parse_amount


ALL_MONTHS = "all"

RowLike = Union[ExpenseRow, RowView]


def _row(item: RowLike) -> ExpenseRow:
    return item.row if isinstance(item, RowView) else item


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, Decimal("0"))


def monthly_history(reports: Iterable[ExpenseReport]) -> list[MonthlySummary]:
    """
    One entry per monthKey, in first-encounter order of the (most-recent-first) report list.

    A report without rows still creates/counts towards its month with zero totals.
    """
    by_key: dict[str, dict[str, Any]] = {}
    for report in reports:
        total = _sum(r.amount for r in report.rows)
        expense_only = _sum(r.amount for r in report.rows if r.amount < 0)
        acc = by_key.get(report.month_key)
        if acc is None:
            by_key[report.month_key] = {"label": report.month_label, "count": 1, "total": total, "expenses": expense_only}
            continue
        acc["count"] += 1
        acc["total"] += total
        acc["expenses"] += expense_only
    return [
        MonthlySummary(
            month_key=k,
            month_label=v["label"],
            report_count=v["count"],
            total_amount=v["total"],
            total_expense_only=v["expenses"],
        )
        for k, v in by_key.items()
    ]


def visible_reports(reports: Sequence[ExpenseReport], month_key: str = ALL_MONTHS) -> list[ExpenseReport]:
    if month_key == ALL_MONTHS:
        return list(reports)
    return [r for r in reports if r.month_key == month_key]


def rows_for_filter(reports: Iterable[ExpenseReport]) -> list[RowView]:
    return [
        RowView(row=row, month_key=report.month_key, month_label=report.month_label, report_id=report.id)
        for report in reports
        for row in report.rows
    ]


def totals(rows: Iterable[RowLike]) -> Totals:
    amounts = [_row(r).amount for r in rows]
    return Totals(total_all=_sum(amounts), total_expenses=_sum(a for a in amounts if a < 0))


def balance_chain(opening_balance: Any, total_all: Decimal, *, month_key: str = "") -> BalanceChain:
    """Opening balance is operator input (free text or number); the closing figure is informational."""
    opening = parse_amount(opening_balance)
    return BalanceChain(
        month_key=month_key,
        opening_balance=opening,
        total_movements=total_all,
        closing_balance=opening + total_all,
    )


def effective_balance_month(selected_month: str, report_month_input: str, visible: Sequence[ExpenseReport]) -> str:
    if selected_month != ALL_MONTHS:
        return selected_month
    if report_month_input:
        return report_month_input
    return visible[0].month_key if visible else ""


def expense_totals_by_category(rows: Iterable[RowLike]) -> list[CategoryTotal]:
    by_cat: dict[str, Decimal] = {}
    for item in rows:
        row = _row(item)
        if row.amount >= 0:
            continue
        key = row.category or UNCATEGORIZED
        by_cat[key] = by_cat.get(key, Decimal("0")) + abs(row.amount)
    ordered = sorted(by_cat.items(), key=lambda kv: kv[1], reverse=True)
    return [CategoryTotal(category=k, total=v) for k, v in ordered]


@dataclass(frozen=True)
class ReportView:
    """Everything a screen or export needs for one card under one month filter."""

    month_filter: str
    reports: list[ExpenseReport]
    rows: list[RowView]
    totals: Totals
    balance: BalanceChain


def build_view(
    reports: Sequence[ExpenseReport],
    *,
    month_filter: str = ALL_MONTHS,
    opening_balances: Optional[Mapping[str, Any]] = None,
    report_month_input: str = "",
) -> ReportView:
    visible = visible_reports(reports, month_filter)
    rows = rows_for_filter(visible)
    t = totals(rows)
    balance_month = effective_balance_month(month_filter, report_month_input, visible)
    opening = (opening_balances or {}).get(balance_month) or 0
    return ReportView(
        month_filter=month_filter,
        reports=visible,
        rows=rows,
        totals=t,
        balance=balance_chain(opening, t.total_all, month_key=balance_month),
    )


def format_history_table(
    history: list[MonthlySummary], *, headers: tuple[str, str, str, str] = ("Month", "Reports", "Total", "Expenses")
) -> str:
    if not history:
        return "(no reports)"
    k_w = max(len(headers[0]), *(len(h.month_label or h.month_key) for h in history))
    c_w = max(len(headers[1]), *(len(str(h.report_count)) for h in history))
    t_w = max(len(headers[2]), *(len(format_amount(h.total_amount)) for h in history))
    e_w = max(len(headers[3]), *(len(format_amount(h.total_expense_only)) for h in history))

    def line(k: str, c: str, t: str, e: str) -> str:
        return f"{k:<{k_w}}  {c:>{c_w}}  {t:>{t_w}}  {e:>{e_w}}"

    out = [line(*headers), line("-" * k_w, "-" * c_w, "-" * t_w, "-" * e_w)]
    for h in history:
        out.append(line(h.month_label or h.month_key, str(h.report_count), format_amount(h.total_amount), format_amount(h.total_expense_only)))
    return "\n".join(out)
