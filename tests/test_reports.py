import csv
import io

from topupstore.services.reports import CSV_HEADERS, dashboard_stats, export_transactions_csv
from topupstore.utils.formatting import format_currency, format_date, format_phone_number, parse_iso

TRANSACTIONS = [
    {"id": "txn-1", "userName": "Ani", "productName": "Free Fire Diamonds", "amount": 11000, "status": "success", "createdAt": "2026-10-18T03:30:00+00:00"},
    {"id": "txn-2", "userName": "Budi", "productName": "PUBG Mobile UC", "amount": 15400, "status": "pending", "createdAt": "2026-10-17T09:05:00+00:00"},
    {"id": "txn-3", "userName": "Citra", "productName": "Valorant Points", "amount": 30000, "status": "processing"},
    {"id": "txn-4", "userName": "Dedi", "productName": "Genshin Impact", "amount": 16500, "status": "success"},
    {"id": "txn-5", "userName": "Eka", "productName": "Mobile Legends", "amount": 22000, "status": "failed"},
]


def test_dashboard_stats():
    assert dashboard_stats(TRANSACTIONS) == {
        "totalTransactions": 5,
        "totalRevenue": 27500,
        "successfulTransactions": 2,
        "pendingTransactions": 2,
    }


def test_dashboard_stats_empty():
    assert dashboard_stats([])["totalRevenue"] == 0


def test_csv_export_quotes_fields_with_commas():
    rows = [dict(TRANSACTIONS[0], userName='Santoso, Budi "BS"')]
    exported = export_transactions_csv(rows)

    parsed = list(csv.reader(io.StringIO(exported)))
    assert parsed[0] == CSV_HEADERS
    assert parsed[1] == ["txn-1", "18 Oktober 2026 03.30", 'Santoso, Budi "BS"', "Free Fire Diamonds", "11000", "success"]
    assert '"Santoso, Budi ""BS"""' in exported


def test_csv_export_header_only_for_no_rows():
    assert export_transactions_csv([]) == "ID,Tanggal,Pembeli,Produk,Jumlah,Status\n"


def test_format_currency():
    assert format_currency(15000) == "Rp 15.000"
    assert format_currency(1234567) == "Rp 1.234.567"
    assert format_currency("abc") == "N/A"


def test_format_date():
    assert format_date("2026-01-05T14:07:00Z") == "5 Januari 2026 14.07"
    assert format_date(None) == ""
    assert format_date("yesterday") == "yesterday"


def test_parse_iso_assumes_utc_for_naive_values():
    parsed = parse_iso("2026-10-18T10:00:00")
    assert parsed.tzinfo is not None
    assert parse_iso("") is None


def test_format_phone_number():
    assert format_phone_number("081234567890") == "+62 812-3456-7890"
    assert format_phone_number("6281234567890") == "+62 812-3456-7890"
