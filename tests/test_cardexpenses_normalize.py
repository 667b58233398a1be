from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from src.cardexpenses.models import Attachment, ExpenseReport, ExpenseRow
from src.cardexpenses.normalize import (
    SPREADSHEET_EPOCH,
    format_amount,
    format_date,
    month_key_from_date,
    month_label_from_date,
    month_label_from_key,
    month_start_label,
    normalize_report,
    normalize_reports,
    parse_amount,
    parse_date,
)
from src.utils.time import UTC


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("-45,50", Decimal("-45.50")),
        ("1.234,56 €", Decimal("1234.56")),
        ("€ 1 000,00", Decimal("1000.00")),
        (12, Decimal("12")),
        (-3.25, Decimal("-3.25")),
        (Decimal("7.10"), Decimal("7.10")),
        ("", Decimal("0")),
        (None, Decimal("0")),
        ("abc", Decimal("0")),
        (float("nan"), Decimal("0")),
        (float("inf"), Decimal("0")),
        ("Infinity", Decimal("0")),
        (True, Decimal("0")),
    ],
)
def test_parse_amount(raw, expected) -> None:
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["-45,50", "1.234,56 €", "0,1", "999999,99", "-0,00", "abc", None, 3.5, -1200])
def test_parse_amount_is_stable_through_formatting(raw) -> None:
    first = parse_amount(raw)
    assert parse_amount(format_amount(first)) == first


def test_format_amount_it_locale() -> None:
    assert format_amount(Decimal("-1234.5")) == "-1.234,50 €"
    assert format_amount(Decimal("0")) == "0,00 €"
    assert format_amount(Decimal("-0.001")) == "0,00 €"
    assert format_amount("not a number") == "0,00 €"


def test_parse_date_day_first_text() -> None:
    assert parse_date("05/03/2024") == dt.datetime(2024, 3, 5, tzinfo=UTC)
    assert parse_date("5/3/24") == dt.datetime(2024, 3, 5, tzinfo=UTC)


def test_parse_date_spreadsheet_serial() -> None:
    assert parse_date(45356) == dt.datetime(2024, 3, 5, tzinfo=UTC)
    assert parse_date(0) == SPREADSHEET_EPOCH
    assert parse_date(45356.5) == dt.datetime(2024, 3, 5, 12, 0, tzinfo=UTC)


def test_parse_date_native_values() -> None:
    assert parse_date(dt.date(2024, 3, 5)) == dt.datetime(2024, 3, 5, tzinfo=UTC)
    assert parse_date(dt.datetime(2024, 3, 5, 10, 30)) == dt.datetime(2024, 3, 5, 10, 30, tzinfo=UTC)
    assert parse_date("2024-03-05T10:30:00Z") == dt.datetime(2024, 3, 5, 10, 30, tzinfo=UTC)


@pytest.mark.parametrize("raw", [None, "", "   ", "not a date", "31/02/2024", -1, -10**12, 10**12, float("nan"), True, object()])
def test_parse_date_never_raises(raw) -> None:
    before = dt.datetime.now(UTC) - dt.timedelta(seconds=1)
    d = parse_date(raw)
    assert isinstance(d, dt.datetime)
    assert d.tzinfo is not None
    if raw in (None, "", "not a date", True, 10**12, -10**12):
        assert d >= before


@pytest.mark.parametrize(
    "raw",
    [
        "0001-01-01T00:00:00+01:00",
        "9999-12-31T23:30:00-05:00",
        dt.datetime(1, 1, 1, tzinfo=dt.timezone(dt.timedelta(hours=2))),
    ],
)
def test_parse_date_out_of_range_in_utc_defaults_to_now(raw) -> None:
    before = dt.datetime.now(UTC) - dt.timedelta(seconds=1)
    assert parse_date(raw) >= before


def test_format_date() -> None:
    assert format_date(dt.datetime(2024, 3, 5, tzinfo=UTC)) == "05/03/2024"
    assert format_date("2024-03-05T00:00:00.000Z") == "05/03/2024"
    assert format_date("") == "-"
    assert format_date("garbage") == "garbage"


def test_month_helpers() -> None:
    d = dt.datetime(2024, 3, 5, tzinfo=UTC)
    assert month_key_from_date(d) == "2024-03"
    assert month_label_from_key("2024-03") == "marzo 2024"
    assert month_label_from_key("2024-13") == ""
    assert month_label_from_date(d) == "marzo 2024"
    assert month_label_from_date("nope") == "mese non valido"
    assert month_start_label("2024-03") == "01/03/2024"
    assert month_start_label("all") == "-"


def _stored_report() -> dict:
    return {
        "id": "1709600000000",
        "createdAt": "2024-03-05T09:00:00.000Z",
        "monthKey": "2024-03",
        "monthLabel": "marzo 2024",
        "closed": False,
        "source": "upload",
        "rows": [
            {
                "id": "1709600000000-0",
                "date": "2024-03-05T00:00:00.000Z",
                "cardLabel": "1234",
                "movement": "RISTORANTE",
                "amount": -45.5,
                "category": "VITTO",
                "detailDescription": "pranzo cliente",
                "attachment": {"name": "r.txt", "type": "text/plain", "dataUrl": "data:text/plain;base64,aGk="},
            }
        ],
    }


def test_normalize_report_from_persisted_shape() -> None:
    r = normalize_report(_stored_report())
    assert r.month_key == "2024-03"
    assert r.extra == {"source": "upload"}
    row = r.rows[0]
    assert row.amount == Decimal("-45.5")
    assert row.date == dt.datetime(2024, 3, 5, tzinfo=UTC)
    assert row.attachment == Attachment(name="r.txt", mime_type="text/plain", content=b"hi")


def test_normalize_report_is_idempotent() -> None:
    once = normalize_report(_stored_report())
    assert normalize_report(once) == once
    assert normalize_report(once.to_dict()) == once
    assert once.to_dict() == normalize_report(once.to_dict()).to_dict()


def test_normalize_report_keeps_stored_month_key() -> None:
    data = _stored_report()
    data["monthKey"] = "2024-02"
    data["monthLabel"] = ""
    r = normalize_report(data)
    assert r.month_key == "2024-02"
    assert r.month_label == "febbraio 2024"


def test_normalize_report_derives_missing_month_from_first_row() -> None:
    data = _stored_report()
    del data["monthKey"]
    del data["monthLabel"]
    r = normalize_report(data)
    assert (r.month_key, r.month_label) == ("2024-03", "marzo 2024")


def test_normalize_reports_rejects_non_lists() -> None:
    assert normalize_reports(None) == []
    assert normalize_reports({"id": "x"}) == []
    assert normalize_reports("[]") == []
    assert len(normalize_reports([_stored_report(), {}])) == 2


def test_normalize_report_with_in_memory_rows() -> None:
    report = ExpenseReport(
        id="r1",
        created_at=dt.datetime(2024, 3, 1, tzinfo=UTC),
        month_key="",
        month_label="",
        rows=(ExpenseRow(id="a", date=dt.datetime(2024, 4, 2, tzinfo=UTC), amount=Decimal("-1")),),
    )
    assert normalize_report(report).month_key == "2024-04"


def test_normalize_report_survives_out_of_range_dates() -> None:
    report = normalize_report({"id": "r", "rows": [{"id": "a", "date": "0001-01-01T00:00:00+01:00"}]})
    assert report.rows[0].date.tzinfo is not None
    assert format_date("0001-01-01T00:00:00+01:00") == "0001-01-01T00:00:00+01:00"
    assert month_key_from_date("0001-01-01T00:00:00+01:00") == ""


def test_normalize_reports_skips_malformed_entries() -> None:
    reports = normalize_reports([5, "x", None, {"id": "ok", "rows": []}])
    assert [r.id for r in reports] == ["ok"]
    assert normalize_reports([{"id": "r", "rows": 5}])[0].rows == ()
    assert normalize_report(7).id == ""
