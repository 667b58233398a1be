from __future__ import annotations

import json
import logging
import mimetypes
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from dotenv import load_dotenv
from sqlalchemy.orm import Session

from src.cardexpenses.book import ReportBook
from src.cardexpenses.config import ExpensesConfig, load_expenses_config
from src.cardexpenses.errors import ImportFailure, ReportClosedError, UnknownEntityError
from src.cardexpenses.ingest import import_statement_file
from src.cardexpenses.models import Attachment, ExpenseReport
from src.cardexpenses.normalize import format_amount, format_date, month_start_label
from src.cardexpenses.pdf.exports import EXPORT_KINDS, export_document
from src.cardexpenses.reports import (
    ALL_MONTHS,
    ReportView,
    build_view,
    effective_balance_month,
    format_history_table,
    monthly_history,
    visible_reports,
)
from src.cardexpenses.runtime import logo_handle
from src.cardexpenses.storage import (
    CardRegistry,
    LocalReportCache,
    ReportLoader,
    ReportRepository,
    persist_reports,
)
from src.db.session import get_session, init_db


log = logging.getLogger(__name__)

expenses_app = typer.Typer(help="Card expense reports: import statements, categorize rows, export PDFs.")
cards_app = typer.Typer(help="Manage corporate cards.")
expenses_app.add_typer(cards_app, name="cards")


@expenses_app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _setup() -> ExpensesConfig:
    load_dotenv()
    cfg, cfg_path = load_expenses_config()
    if cfg_path:
        log.info("Using config: %s", cfg_path)
    init_db(cfg.database_url)
    return cfg


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (ImportFailure, ReportClosedError, UnknownEntityError, ValueError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)


def _load_reports(session: Session, cfg: ExpensesConfig, card_id: int) -> list[ExpenseReport]:
    loader = ReportLoader(LocalReportCache(Path(cfg.cache_dir)), ReportRepository(session))
    cached = loader.cached(card_id)
    return loader.refresh(card_id, cached)


def _load_book(session: Session, cfg: ExpensesConfig, card_id: int) -> ReportBook:
    CardRegistry(session).get(card_id)
    book = ReportBook(categories=tuple(cfg.categories))
    return book.with_reports(card_id, _load_reports(session, cfg, card_id))


def _persist(session: Session, cfg: ExpensesConfig, card_id: int, book: ReportBook) -> None:
    result = persist_reports(
        card_id,
        book.reports(card_id),
        cache=LocalReportCache(Path(cfg.cache_dir)),
        repository=ReportRepository(session),
    )
    if not result.stored_remotely:
        typer.echo(f"Warning: reports saved locally only ({result.error})", err=True)


def _view(reports: list[ExpenseReport], month: str, opening_balance: str, report_month: str) -> ReportView:
    balance_month = effective_balance_month(month, report_month, visible_reports(reports, month))
    opening = {balance_month: opening_balance} if opening_balance.strip() else {}
    return build_view(reports, month_filter=month, opening_balances=opening, report_month_input=report_month)


@cards_app.command("add")
def cards_add_cmd(
    last4: str = typer.Option(..., help="Last 4 digits of the card"),
    holder: str = typer.Option(..., help="Holder name (CASSAFORTE marks an unassigned card)"),
):
    _setup()
    with _cli_errors(), get_session() as session:
        card = CardRegistry(session).add_card(last4=last4, holder_name=holder)
    typer.echo(json.dumps(card.model_dump(), indent=2))


@cards_app.command("list")
def cards_list_cmd():
    _setup()
    with get_session() as session:
        cards = CardRegistry(session).list_cards()
    typer.echo(json.dumps([c.model_dump() for c in cards], indent=2))


@cards_app.command("delete")
def cards_delete_cmd(card_id: int = typer.Option(...)):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        CardRegistry(session).delete_card(card_id)
    LocalReportCache(Path(cfg.cache_dir)).clear(card_id)
    typer.echo(f"Deleted card {card_id}")


@expenses_app.command("import")
def import_cmd(
    card_id: int = typer.Option(...),
    file: Path = typer.Option(..., exists=True, dir_okay=False, help="Statement export (.xlsx/.csv)"),
    month: str = typer.Option("", help="Report month YYYY-MM (defaults to the first row's month)"),
    format: str = typer.Option("", help="Format override (e.g., card_movements)"),
    commit: bool = typer.Option(False, help="Add the draft to the card's reports"),
):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        draft = import_statement_file(file, month_key=month.strip() or None, format_name=format.strip() or None)
        if commit:
            book = _load_book(session, cfg, card_id).add_report(card_id, draft.report)
            _persist(session, cfg, card_id, book)
    typer.echo(json.dumps(draft.summary(committed=commit).model_dump(), indent=2, default=str))


@expenses_app.command("history")
def history_cmd(card_id: int = typer.Option(...)):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id)
    typer.echo(format_history_table(monthly_history(book.reports(card_id))))


@expenses_app.command("rows")
def rows_cmd(
    card_id: int = typer.Option(...),
    month: str = typer.Option(ALL_MONTHS, help="YYYY-MM or 'all'"),
    opening_balance: str = typer.Option("", help="Opening balance for the balance month (e.g. 1.000,00)"),
    report_month: str = typer.Option("", help="Balance month when --month is 'all'"),
):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id)
    view = _view(book.reports(card_id), month, opening_balance, report_month)
    out = {
        "rows": [
            {
                "report_id": item.report_id,
                "row_id": item.row.id,
                "date": format_date(item.row.date),
                "month": item.month_label,
                "card": item.row.card_label,
                "movement": item.row.movement,
                "category": item.row.category,
                "description": item.row.detail_description,
                "amount": format_amount(item.row.amount),
                "attachment": item.row.attachment.name if item.row.attachment else None,
            }
            for item in view.rows
        ],
        "total_all": format_amount(view.totals.total_all),
        "total_expenses": format_amount(view.totals.total_expenses),
        "balance_from": month_start_label(view.balance.month_key),
        "opening_balance": format_amount(view.balance.opening_balance),
        "closing_balance": format_amount(view.balance.closing_balance),
    }
    typer.echo(json.dumps(out, indent=2, ensure_ascii=False))


@expenses_app.command("categorize")
def categorize_cmd(
    card_id: int = typer.Option(...),
    report_id: str = typer.Option(...),
    row_id: str = typer.Option(...),
    category: Optional[str] = typer.Option(None, help="Category name; empty string clears it"),
    detail: Optional[str] = typer.Option(None, help="Detail description"),
):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id)
        kwargs = {}
        if category is not None:
            kwargs["category"] = category
        if detail is not None:
            kwargs["detail_description"] = detail
        if not kwargs:
            raise ValueError("Provide --category and/or --detail")
        book = book.update_row(card_id, report_id, row_id, **kwargs)
        _persist(session, cfg, card_id, book)
        row = book.report(card_id, report_id).row(row_id)
    typer.echo(json.dumps({"row_id": row.id, "category": row.category, "detail": row.detail_description}, indent=2))


@expenses_app.command("attach")
def attach_cmd(
    card_id: int = typer.Option(...),
    report_id: str = typer.Option(...),
    row_id: str = typer.Option(...),
    file: Path = typer.Option(..., exists=True, dir_okay=False, help="Receipt image or PDF"),
):
    cfg = _setup()
    mime = mimetypes.guess_type(file.name)[0] or "application/octet-stream"
    attachment = Attachment(name=file.name, mime_type=mime, content=file.read_bytes())
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id).set_attachment(card_id, report_id, row_id, attachment)
        _persist(session, cfg, card_id, book)
    typer.echo(f"Attached {file.name} ({mime}) to row {row_id}")


@expenses_app.command("detach")
def detach_cmd(
    card_id: int = typer.Option(...),
    report_id: str = typer.Option(...),
    row_id: str = typer.Option(...),
):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id).remove_attachment(card_id, report_id, row_id)
        _persist(session, cfg, card_id, book)
    typer.echo(f"Removed attachment from row {row_id}")


@expenses_app.command("close")
def close_cmd(card_id: int = typer.Option(...), report_id: str = typer.Option(...)):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id).close_report(card_id, report_id)
        _persist(session, cfg, card_id, book)
    typer.echo(f"Closed report {report_id}")


@expenses_app.command("save")
def save_cmd(card_id: int = typer.Option(...), report_id: str = typer.Option(...)):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id).mark_saved(card_id, report_id)
        _persist(session, cfg, card_id, book)
    typer.echo(f"Saved report {report_id}")


@expenses_app.command("delete-report")
def delete_report_cmd(card_id: int = typer.Option(...), report_id: str = typer.Option(...)):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        book = _load_book(session, cfg, card_id).delete_report(card_id, report_id)
        _persist(session, cfg, card_id, book)
    typer.echo(f"Deleted report {report_id}")


@expenses_app.command("export")
def export_cmd(
    card_id: int = typer.Option(...),
    kind: str = typer.Option("summary", help="|".join(EXPORT_KINDS)),
    month: str = typer.Option(ALL_MONTHS, help="YYYY-MM or 'all'"),
    opening_balance: str = typer.Option("", help="Opening balance for the balance month"),
    report_month: str = typer.Option("", help="Balance month when --month is 'all'"),
    out_dir: Optional[Path] = typer.Option(None, help="Output directory (defaults to exports_dir)"),
    attachments: bool = typer.Option(True, help="Append attachment pages to the summary"),
):
    cfg = _setup()
    with _cli_errors(), get_session() as session:
        card = CardRegistry(session).get(card_id)
        reports = _load_book(session, cfg, card_id).reports(card_id)
        view = _view(reports, month, opening_balance, report_month)
        kwargs = {
            "branding": cfg.branding,
            "logo": logo_handle(cfg.branding.logo_path),
            "tz_name": cfg.ui_timezone,
        }
        if kind == "summary":
            kwargs["include_attachments"] = attachments
        doc = export_document(kind, view, card, **kwargs)

    target = Path(out_dir or cfg.exports_dir)
    target.mkdir(parents=True, exist_ok=True)
    path = target / doc.file_name
    path.write_bytes(doc.content)
    typer.echo(f"Wrote {path} ({doc.page_count} pages)")
