from __future__ import annotations

import csv
import logging
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from salesdesk.domain.models import SaleRecord

log = logging.getLogger(__name__)

STATUS_LABELS = {
    "pending": "En attente",
    "validated": "Validé",
    "cancelled": "Annulé",
}

REASON_LABELS = {
    "stock_unavailable": "Stock indisponible",
    "not_eligible": "Non éligible",
    "other": "Autre",
}

CSV_HEADERS = [
    "N° Reçu",
    "Date",
    "Nom",
    "Prénom",
    "Matricule",
    "Grade",
    "Montant (FCFA)",
    "Statut",
    "Agent",
    "Validé par",
    "Date validation",
]

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def sanitize_cell(value: object) -> str:
    """Quote values a spreadsheet would otherwise evaluate as a formula.

    The value itself is kept; a leading apostrophe makes Excel and LibreOffice
    treat the cell as text.
    """
    if value is None:
        return ""
    text = str(value).strip()
    if text.startswith(_FORMULA_PREFIXES):
        log.warning("export_cell_quoted original=%r", text[:100])
        return "'" + text
    return text


def _day(iso: str | None) -> str:
    if not iso:
        return ""
    # stored as "YYYY-MM-DD HH:MM:SS"; exported as DD/MM/YYYY
    y, m, d = iso[:10].split("-")
    return f"{d}/{m}/{y}"


def _csv_row(record: SaleRecord) -> list[str]:
    sale = record.sale
    validated_at = sale.status.at if sale.status_name == "validated" else None
    return [
        sale.receipt_number,
        _day(sale.created_at),
        sanitize_cell(sale.buyer.last_name),
        sanitize_cell(sale.buyer.first_name),
        sanitize_cell(sale.buyer.matricule),
        sale.buyer.grade,
        str(sale.total_amount),
        STATUS_LABELS[sale.status_name],
        sanitize_cell(record.agent_name),
        sanitize_cell(record.validator_name),
        _day(validated_at),
    ]


class ExportService:
    def __init__(self, sales_service, reporting_service):
        self.sales = sales_service
        self.reporting = reporting_service

    def export_sales_csv(self, path: str | Path) -> Path:
        target = Path(path)
        records = self.sales.list_all()
        # utf-8-sig writes the BOM Excel needs to detect UTF-8
        with target.open("w", encoding="utf-8-sig", newline="") as fh:
            writer = csv.writer(fh, quoting=csv.QUOTE_ALL)
            writer.writerow(CSV_HEADERS)
            for record in records:
                writer.writerow(_csv_row(record))
        log.info("sales_exported format=csv rows=%s path=%s", len(records), target)
        return target

    def export_sales_excel(self, path: str | Path) -> Path:
        target = Path(path)
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        stats = self.reporting.get_dashboard_stats()
        records = self.sales.list_all()

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Summary"
        ws["A1"].font = Font(bold=True, size=14)

        rows = [
            ("Sales (excl. cancelled)", stats.total_sales, False),
            ("Revenue (validated)", stats.total_revenue, True),
            ("Pending", stats.pending_count, False),
            ("Validated", stats.validated_count, False),
            ("Cancelled", stats.cancelled_count, False),
        ]
        start_row = 3
        for i, (label, val, is_money) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = int(val)
            if is_money:
                money(ws[f"B{r}"])

        r = start_row + len(rows) + 1
        for title, breakdown in (
            ("By product", stats.by_product),
            ("By agent", stats.by_agent),
            ("By grade", stats.by_grade),
        ):
            ws[f"A{r}"] = title
            ws[f"A{r}"].font = Font(bold=True)
            r += 1
            for row in breakdown:
                ws[f"A{r}"] = row.key
                ws[f"B{r}"] = int(row.count)
                ws[f"C{r}"] = int(row.revenue)
                money(ws[f"C{r}"])
                r += 1
            r += 1
        set_widths(ws, {"A": 28, "B": 14, "C": 16})

        # -------- 2) Sales --------
        ws2 = wb.create_sheet("Sales")
        ws2.append([
            "Receipt", "Created at", "Last name", "First name", "Matricule", "Grade",
            "Amount", "Status", "Agent", "Validated by", "Validated at",
            "Cancelled by", "Cancelled at", "Reason", "Note",
        ])
        bold_row(ws2, 1)
        for rec in records:
            sale = rec.sale
            status = sale.status
            validated = sale.status_name == "validated"
            cancelled = sale.status_name == "cancelled"
            ws2.append([
                sale.receipt_number, sale.created_at,
                sanitize_cell(sale.buyer.last_name), sanitize_cell(sale.buyer.first_name),
                sanitize_cell(sale.buyer.matricule), sale.buyer.grade,
                int(sale.total_amount), STATUS_LABELS[sale.status_name],
                sanitize_cell(rec.agent_name),
                sanitize_cell(rec.validator_name) if validated else "",
                status.at if validated else "",
                sanitize_cell(rec.canceller_name) if cancelled else "",
                status.at if cancelled else "",
                REASON_LABELS[status.reason] if cancelled else "",
                sanitize_cell(status.note) if cancelled else "",
            ])
            money(ws2[f"G{ws2.max_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 22, "B": 20, "C": 18, "D": 18, "E": 14, "F": 14,
            "G": 12, "H": 12, "I": 20, "J": 20, "K": 20,
            "L": 20, "M": 20, "N": 20, "O": 30,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "SalesRegister", 1, 1, ws2.max_row, 15)

        # -------- 3) Sale Items --------
        ws3 = wb.create_sheet("Sale Items")
        ws3.append(["Receipt", "Status", "Product", "Weight", "Qty", "Unit price", "Line total"])
        bold_row(ws3, 1)
        for rec in records:
            for it in rec.items:
                ws3.append([
                    rec.receipt_number, STATUS_LABELS[rec.status_name],
                    it.product_name, it.product_weight,
                    int(it.quantity), int(it.unit_price), int(it.line_total),
                ])
                money(ws3[f"F{ws3.max_row}"])
                money(ws3[f"G{ws3.max_row}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 22, "B": 12, "C": 18, "D": 10, "E": 6, "F": 12, "G": 12})
        if ws3.max_row >= 2:
            add_table(ws3, "SaleItems", 1, 1, ws3.max_row, 7)

        wb.save(target)
        log.info("sales_exported format=xlsx rows=%s path=%s", len(records), target)
        return target
