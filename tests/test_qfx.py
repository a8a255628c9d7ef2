import datetime as dt
from decimal import Decimal

import pytest
from tally.qfx import load_qfx, map_to_api_format, parse_date, parse_qfx, to_cents

SAMPLE = """OFXHEADER:100
DATA:OFXSGML
<OFX>
<BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240115120000.000
<TRNAMT>-12.005
<FITID>FIT001
<NAME>STARBUCKS #4521
<MEMO>SEATTLE WA
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240116
<TRNAMT>1500.00
<FITID>FIT002
<NAME>PAYROLL ACME
</STMTTRN>
<STMTTRN>
<DTPOSTED>20240117
<TRNAMT>-3.50
<NAME>NO FITID HERE
</STMTTRN>
<STMTTRN>
<DTPOSTED>20240118
<TRNAMT>abc
<FITID>FIT004
<NAME>BAD AMOUNT
</STMTTRN>
</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1>
</OFX>
"""


def test_parse_qfx_keeps_valid_records_and_reports_bad_ones():
    result = parse_qfx(SAMPLE)

    assert [r.fit_id for r in result.transactions] == ["FIT001", "FIT002"]
    assert [e.index for e in result.errors] == [3, 4]
    assert "FITID" in result.errors[0].message
    assert "TRNAMT" in result.errors[1].message


def test_dtposted_is_sliced_to_calendar_date():
    rec = parse_qfx(SAMPLE).transactions[0]
    assert rec.date == dt.date(2024, 1, 15)
    assert map_to_api_format(rec).to_wire()["date"] == "2024-01-15"


def test_trnamt_rounds_half_away_from_zero():
    assert to_cents("-12.005") == -1201
    assert to_cents("12.005") == 1201
    assert to_cents("0.125") == 13
    assert to_cents("-0.004") == 0
    assert to_cents(Decimal("1500")) == 150000
    with pytest.raises(ValueError):
        to_cents("NaN")


def test_map_to_api_format_joins_name_and_memo():
    first, second = parse_qfx(SAMPLE).transactions

    api = map_to_api_format(first)
    assert api.amount == -1201
    assert api.transaction_details == "STARBUCKS #4521 - SEATTLE WA"
    assert api.notes == "SEATTLE WA"
    assert api.external_id == "FIT001"

    api2 = map_to_api_format(second)
    assert api2.transaction_details == "PAYROLL ACME"
    assert api2.notes is None
    assert api2.amount == 150000
    assert api2.to_wire() == {
        "amount": 150000,
        "date": "2024-01-16",
        "transactionDetails": "PAYROLL ACME",
        "externalId": "FIT002",
    }


def test_invalid_dates_are_record_errors():
    with pytest.raises(ValueError):
        parse_date("2024011")
    with pytest.raises(ValueError):
        parse_date("20241345")
    text = "<STMTTRN><DTPOSTED>2024XX01<TRNAMT>1<FITID>A<NAME>N</STMTTRN>"
    result = parse_qfx(text)
    assert result.transactions == []
    assert result.errors[0].index == 1


def test_closed_tags_and_crlf_are_tolerated():
    text = (
        "<STMTTRN>\r\n<DTPOSTED>20240301</DTPOSTED>\r\n<TRNAMT>-1.10</TRNAMT>\r\n"
        "<FITID>X1</FITID>\r\n<NAME>CAFE &amp; BAR</NAME>\r\n</STMTTRN>"
    )
    (rec,) = parse_qfx(text).transactions
    assert rec.name == "CAFE &amp; BAR"
    assert to_cents(rec.amount) == -110


def test_file_without_transactions_raises():
    with pytest.raises(ValueError, match="No transactions"):
        parse_qfx("<OFX></OFX>")


def test_load_qfx_falls_back_to_latin1(tmp_path):
    path = tmp_path / "stmt.qfx"
    path.write_bytes(
        b"<STMTTRN><DTPOSTED>20240101<TRNAMT>-2.00<FITID>L1<NAME>CAF\xc9 PARIS</STMTTRN>"
    )
    (rec,) = load_qfx(path).transactions
    assert rec.name == "CAFÉ PARIS"
