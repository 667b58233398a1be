from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from src.cardexpenses.errors import PersistenceUnavailable, UnknownEntityError
from src.cardexpenses.models import ExpenseReport, ExpenseRow
from src.cardexpenses.storage import (
    CardRegistry,
    LocalReportCache,
    ReportLoader,
    ReportRepository,
    persist_reports,
)
from src.utils.time import UTC


def _report(rid: str, amount: str = "-10.00") -> ExpenseReport:
    return ExpenseReport(
        id=rid,
        created_at=dt.datetime(2024, 3, 31, tzinfo=UTC),
        month_key="2024-03",
        month_label="marzo 2024",
        rows=(ExpenseRow(id=f"{rid}-0", date=dt.datetime(2024, 3, 5, tzinfo=UTC), amount=Decimal(amount)),),
    )


def test_card_registry_add_list_delete(session) -> None:
    reg = CardRegistry(session)
    a = reg.add_card(last4="1234", holder_name="Mario Rossi")
    b = reg.add_card(last4=" 9876 ", holder_name="CASSAFORTE")
    assert a.status == "assigned"
    assert b.status == "available"
    assert b.last4 == "9876"
    assert [c.id for c in reg.list_cards()] == [b.id, a.id]
    assert reg.get(a.id).holder_name == "Mario Rossi"

    ReportRepository(session).put(a.id, [_report("r1").to_dict()])
    reg.delete_card(a.id)
    assert [c.id for c in reg.list_cards()] == [b.id]
    assert ReportRepository(session).get(a.id) == []
    with pytest.raises(UnknownEntityError):
        reg.get(a.id)
    with pytest.raises(UnknownEntityError):
        reg.delete_card(a.id)


@pytest.mark.parametrize("last4,holder", [("123", "X"), ("12a4", "X"), ("12345", "X"), ("1234", "   ")])
def test_card_registry_validation(session, last4, holder) -> None:
    with pytest.raises(ValueError):
        CardRegistry(session).add_card(last4=last4, holder_name=holder)


def test_repository_round_trip(session, card) -> None:
    repo = ReportRepository(session)
    assert repo.get(card.id) == []
    repo.put(card.id, [_report("r1").to_dict()])
    repo.put(card.id, [_report("r2").to_dict(), _report("r1").to_dict()])
    stored = repo.get(card.id)
    assert [r["id"] for r in stored] == ["r2", "r1"]
    assert stored[0]["rows"][0]["amount"] == -10.0


def test_local_cache_round_trip(tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path / "cache")
    assert cache.load(1) == []
    cache.store(1, [_report("r1")])
    assert cache.path_for(1).name == "expense-reports-1.json"
    assert cache.load(1) == [_report("r1")]
    cache.path_for(2).write_text("{not json", encoding="utf-8")
    assert cache.load(2) == []
    cache.clear(1)
    assert not cache.path_for(1).exists()


class _FailingRepository(ReportRepository):
    def __init__(self) -> None:
        pass

    def get(self, card_id: int):
        raise PersistenceUnavailable("offline")

    def put(self, card_id: int, reports) -> None:
        raise PersistenceUnavailable("offline")


def test_loader_prefers_non_empty_remote(session, card, tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path)
    cache.store(card.id, [_report("local")])
    ReportRepository(session).put(card.id, [_report("remote").to_dict()])

    phases = list(ReportLoader(cache, ReportRepository(session)).load(card.id))
    assert [r.id for r in phases[0]] == ["local"]
    assert [r.id for r in phases[1]] == ["remote"]
    assert [r.id for r in cache.load(card.id)] == ["remote"]


def test_loader_keeps_local_when_remote_is_empty(session, card, tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path)
    cache.store(card.id, [_report("local")])
    loader = ReportLoader(cache, ReportRepository(session))
    assert [r.id for r in loader.refresh(card.id, loader.cached(card.id))] == ["local"]


def test_loader_keeps_local_when_store_unavailable(tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path)
    cache.store(1, [_report("local")])
    loader = ReportLoader(cache, _FailingRepository())
    assert [r.id for r in loader.refresh(1, loader.cached(1))] == ["local"]


def test_persist_reports_writes_both_stores(session, card, tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path)
    result = persist_reports(card.id, [_report("r1")], cache=cache, repository=ReportRepository(session))
    assert result.stored_remotely is True
    assert result.error is None
    assert [r["id"] for r in ReportRepository(session).get(card.id)] == ["r1"]
    assert json.loads(cache.path_for(card.id).read_text(encoding="utf-8"))[0]["id"] == "r1"


def test_persist_reports_keeps_local_copy_when_store_fails(tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path)
    result = persist_reports(7, [_report("r1")], cache=cache, repository=_FailingRepository())
    assert result.stored_remotely is False
    assert "offline" in (result.error or "")
    assert result.reports == [_report("r1")]
    assert [r.id for r in cache.load(7)] == ["r1"]


def test_repository_wraps_database_errors(session, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "query", boom)
    with pytest.raises(PersistenceUnavailable):
        ReportRepository(session).get(1)
    with pytest.raises(PersistenceUnavailable):
        ReportRepository(session).put(1, [])


def test_local_cache_skips_malformed_entries(tmp_path: Path) -> None:
    cache = LocalReportCache(tmp_path)
    cache.path_for(1).write_text(
        json.dumps([5, {"id": "ok", "rows": []}, {"id": "bad-rows", "rows": 5}]), encoding="utf-8"
    )
    reports = cache.load(1)
    assert [r.id for r in reports] == ["ok", "bad-rows"]
    assert reports[1].rows == ()


def test_loader_tolerates_malformed_stored_reports(session, card, tmp_path: Path) -> None:
    ReportRepository(session).put(card.id, [7, {"id": "remote", "rows": "x"}])
    loader = ReportLoader(LocalReportCache(tmp_path), ReportRepository(session))
    assert [r.id for r in loader.refresh(card.id, [])] == ["remote"]
