import csv
import io
from typing import Any, Dict, Iterable, List

from ..utils.formatting import format_date

CSV_HEADERS = ["ID", "Tanggal", "Pembeli", "Produk", "Jumlah", "Status"]


def dashboard_stats(transactions: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    rows = list(transactions)
    successful = [row for row in rows if row.get("status") == "success"]
    revenue = 0
    for row in successful:
        try:
            revenue += row.get("amount") or 0
        except TypeError:
            continue
    return {
        "totalTransactions": len(rows),
        "totalRevenue": revenue,
        "successfulTransactions": len(successful),
        "pendingTransactions": len([row for row in rows if row.get("status") in {"pending", "processing"}]),
    }


def export_transactions_csv(transactions: List[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in transactions:
        writer.writerow(
            [
                row.get("id", ""),
                format_date(row.get("createdAt")),
                row.get("userName", ""),
                row.get("productName", ""),
                row.get("amount", ""),
                row.get("status", ""),
            ]
        )
    return buffer.getvalue()
