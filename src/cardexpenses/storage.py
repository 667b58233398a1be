from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.cardexpenses.errors import PersistenceUnavailable, UnknownEntityError
from src.cardexpenses.models import CardInfo, ExpenseReport
from src.cardexpenses.normalize import normalize_reports
from src.db.models import Card, CardReportSet


log = logging.getLogger(__name__)

SAFE_BOX_HOLDER = "CASSAFORTE"


def card_status_for(holder_name: str) -> str:
    return "available" if holder_name == SAFE_BOX_HOLDER else "assigned"


def _card_info(card: Card) -> CardInfo:
    return CardInfo(id=card.id, last4=card.card_last4, holder_name=card.holder_name, status=card.status)


class CardRegistry:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_cards(self) -> list[CardInfo]:
        rows = self.session.query(Card).order_by(Card.id.desc()).all()
        return [_card_info(c) for c in rows]

    def get(self, card_id: int) -> CardInfo:
        card = self.session.query(Card).filter(Card.id == int(card_id)).one_or_none()
        if card is None:
            raise UnknownEntityError(f"Card {card_id} not found")
        return _card_info(card)

    def add_card(self, *, last4: str, holder_name: str) -> CardInfo:
        digits = (last4 or "").strip()
        holder = (holder_name or "").strip()
        if len(digits) != 4 or not digits.isdigit():
            raise ValueError("Card last4 must be exactly 4 digits")
        if not holder:
            raise ValueError("Holder name is required")
        card = Card(card_last4=digits, holder_name=holder, status=card_status_for(holder))
        self.session.add(card)
        self.session.commit()
        return _card_info(card)

    def delete_card(self, card_id: int) -> None:
        """Removes the card and every report stored for it."""
        self.session.query(CardReportSet).filter(CardReportSet.card_id == int(card_id)).delete(synchronize_session=False)
        deleted = self.session.query(Card).filter(Card.id == int(card_id)).delete(synchronize_session=False)
        self.session.commit()
        if not deleted:
            raise UnknownEntityError(f"Card {card_id} not found")


class ReportRepository:
    """Authoritative store: one JSON report array per card."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, card_id: int) -> list[dict[str, Any]]:
        try:
            row = (
                self.session.query(CardReportSet)
                .filter(CardReportSet.card_id == int(card_id))
                .one_or_none()
            )
        except SQLAlchemyError as e:
            raise PersistenceUnavailable(f"Could not read reports for card {card_id}: {e}") from e
        if row is None or not isinstance(row.reports_json, list):
            return []
        return list(row.reports_json)

    def put(self, card_id: int, reports: list[dict[str, Any]]) -> None:
        try:
            row = (
                self.session.query(CardReportSet)
                .filter(CardReportSet.card_id == int(card_id))
                .one_or_none()
            )
            if row is None:
                self.session.add(CardReportSet(card_id=int(card_id), reports_json=reports))
            else:
                row.reports_json = reports
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceUnavailable(f"Could not store reports for card {card_id}: {e}") from e


class LocalReportCache:
    """Per-card JSON snapshots on local disk, read before the authoritative store answers."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, card_id: int) -> Path:
        return self.root / f"expense-reports-{card_id}.json"

    def load(self, card_id: int) -> list[ExpenseReport]:
        p = self.path_for(card_id)
        if not p.exists():
            return []
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable report cache %s: %s", p, e)
            return []
        return normalize_reports(data if isinstance(data, list) else [])

    def store(self, card_id: int, reports: Iterable[ExpenseReport]) -> None:
        p = self.path_for(card_id)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(json.dumps([r.to_dict() for r in reports], ensure_ascii=False), encoding="utf-8")
        tmp.replace(p)

    def clear(self, card_id: int) -> None:
        self.path_for(card_id).unlink(missing_ok=True)


class ReportLoader:
    """
    Two-phase load: the cached snapshot first, then the authoritative store.

    The store's answer replaces the cache only when it is non-empty, so an empty remote
    result never wipes locally held reports.
    """

    def __init__(self, cache: LocalReportCache, repository: Optional[ReportRepository]) -> None:
        self.cache = cache
        self.repository = repository

    def cached(self, card_id: int) -> list[ExpenseReport]:
        return self.cache.load(card_id)

    def refresh(self, card_id: int, local: list[ExpenseReport]) -> list[ExpenseReport]:
        if self.repository is None:
            return local
        try:
            remote = normalize_reports(self.repository.get(card_id))
        except PersistenceUnavailable as e:
            log.warning("Report store unavailable, keeping cached reports for card %s: %s", card_id, e)
            return local
        final = remote if remote else local
        self.cache.store(card_id, final)
        return final

    def load(self, card_id: int) -> Iterator[list[ExpenseReport]]:
        local = self.cached(card_id)
        yield local
        yield self.refresh(card_id, local)


@dataclass(frozen=True)
class PersistResult:
    reports: list[ExpenseReport]
    stored_remotely: bool
    error: Optional[str] = None


def persist_reports(
    card_id: int,
    reports: Iterable[ExpenseReport],
    *,
    cache: LocalReportCache,
    repository: Optional[ReportRepository],
) -> PersistResult:
    """Normalize, write the local cache, then the authoritative store."""
    normalized = normalize_reports(list(reports))
    cache.store(card_id, normalized)
    if repository is None:
        return PersistResult(reports=normalized, stored_remotely=False)
    try:
        repository.put(card_id, [r.to_dict() for r in normalized])
    except PersistenceUnavailable as e:
        log.warning("Reports for card %s saved locally only: %s", card_id, e)
        return PersistResult(reports=normalized, stored_remotely=False, error=str(e))
    return PersistResult(reports=normalized, stored_remotely=True)
