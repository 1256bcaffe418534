"""Preparation tickets and customer receipts rendered as 58mm PDF rolls."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from reportlab.lib.pagesizes import portrait
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from ..core.business import BusinessConfig
from ..core.db import setting_get
from ..core.paths import PRINTS_DIR
from ..utils.currency import format_amount

logger = logging.getLogger(__name__)

_FONT_NAME = "Helvetica"
_FONT_CANDIDATES = [
    "arial.ttf",
    "segoeui.ttf",
    "tahoma.ttf",
    "dejavusans.ttf",
    "DejaVuSans.ttf",
    "NotoSans-Regular.ttf",
]
_RULE = "------------------------------"

PAYMENT_LABELS = {"cash": "Efectivo", "card": "Tarjeta", "online": "PayPal"}


def _font_search_paths() -> List[Path]:
    paths: List[Path] = []
    if sys.platform.startswith("win"):
        windir = Path(os.environ.get("WINDIR", r"C:\\Windows"))
        paths.append(windir / "Fonts")
    else:
        paths.extend(
            [
                Path.home() / ".fonts",
                Path("/usr/share/fonts/truetype/dejavu"),
                Path("/usr/share/fonts"),
                Path("/usr/local/share/fonts"),
            ]
        )
    return [p for p in paths if p.exists()]


def _register_font() -> None:
    global _FONT_NAME
    if "MesaPOSFont" in pdfmetrics.getRegisteredFontNames():
        _FONT_NAME = "MesaPOSFont"
        return

    for folder in _font_search_paths():
        for candidate in _FONT_CANDIDATES:
            path = folder / candidate
            if not path.exists():
                continue
            try:
                pdfmetrics.registerFont(TTFont("MesaPOSFont", str(path)))
            except Exception:
                logger.debug("font %s could not be registered", path)
                continue
            else:
                _FONT_NAME = "MesaPOSFont"
                return


def _sanitize_filename(value: str) -> str:
    safe = [ch if ch.isalnum() else "-" for ch in value]
    return "".join(safe).strip("-") or "ticket"


def _line_height() -> float:
    return 14.0


def _page_dimensions(line_count: int) -> tuple[float, float]:
    width = 200  # 58mm roll
    base_height = 60
    height = max(base_height, base_height + line_count * _line_height())
    return portrait((width, height))


def _collapse_lines(items: Iterable) -> List[dict]:
    """Group receipt lines by product, note and unit price."""
    grouped: OrderedDict[tuple, dict] = OrderedDict()
    for it in items:
        key = (it.product_name, (it.notes or "").strip(), it.unit_price_cents)
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = {
                "product": it.product_name,
                "note": key[1],
                "qty": it.quantity,
                "unit_price": it.unit_price_cents,
                "total_cents": it.total_cents,
            }
        else:
            entry["qty"] += it.quantity
            entry["total_cents"] += it.total_cents
    return list(grouped.values())


def format_ticket_lines(ticket) -> List[str]:
    ts = ticket.created_at.strftime("%Y-%m-%d %H:%M")
    lines = [
        f"ORDEN #{ticket.order_number}",
        f"{ticket.occupant}",
        f"Hora: {ts}",
        _RULE,
    ]
    for item in ticket.items:
        lines.append(f"{item.quantity} x {item.name} ({item.prep_minutes} min)")
        if item.notes:
            lines.append(f"  {item.notes}")
    lines.append(_RULE)
    return lines


def format_receipt_lines(result, config: BusinessConfig, cashier: str = "") -> List[str]:
    currency = config.currency
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines = [
        config.company_name,
        f"Factura: {result.invoice_number}",
        f"{result.occupant}" + (f" - Cajero: {cashier}" if cashier else ""),
        f"Fecha: {ts}",
        f"Pago: {PAYMENT_LABELS.get(result.payment_method, result.payment_method)}",
        _RULE,
    ]
    for entry in _collapse_lines(result.items):
        lines.append(f"{entry['qty']} x {entry['product']}")
        lines.append(
            f"   @ {format_amount(entry['unit_price'], currency)} = {format_amount(entry['total_cents'], currency)}"
        )
        if entry["note"]:
            lines.append(f"   {entry['note']}")
    lines.append(_RULE)
    lines.append(f"Subtotal: {format_amount(result.subtotal_cents, currency)}")
    if result.tip_cents:
        lines.append(f"Propina: {format_amount(result.tip_cents, currency)}")
    if result.tax_cents:
        lines.append(f"Impuesto: {format_amount(result.tax_cents, currency)}")
    lines.append(f"Total: {format_amount(result.total_cents, currency)}")
    lines.append("Gracias por su visita")
    return lines


class TicketPrinter:
    """Write tickets and receipts as PDFs and optionally send them to a printer."""

    __slots__ = ("output_dir", "kitchen_printer", "receipt_printer", "__weakref__")

    def __init__(self, output_dir: Path | None = None) -> None:
        self.output_dir = Path(output_dir) if output_dir is not None else PRINTS_DIR
        self.kitchen_printer = ""
        self.receipt_printer = ""
        _register_font()
        self.reload_from_settings()

    def reload_from_settings(self) -> None:
        self.kitchen_printer = (setting_get("kitchen_printer", "") or "").strip()
        self.receipt_printer = (setting_get("receipt_printer", "") or "").strip()

    def _render_pdf(self, title: str, lines: List[str], folder: str, prefix: str) -> Path:
        target_dir = self.output_dir / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        target = target_dir / f"{timestamp}-{_sanitize_filename(prefix)}.pdf"
        width, height = _page_dimensions(len(lines) + 4)
        canv = canvas.Canvas(str(target), pagesize=(width, height))
        canv.setTitle(title)
        canv.setAuthor("Mesa POS")
        canv.setFont(_FONT_NAME, 10)

        x = 10
        y = height - 18
        for line in lines:
            canv.drawString(x, y, line)
            y -= _line_height()
        canv.showPage()
        canv.save()
        return target

    def _dispatch(self, pdf_path: Path, printer_name: Optional[str]) -> None:
        if not printer_name:
            return
        try:
            if sys.platform.startswith("win"):
                os.startfile(str(pdf_path), "print")  # type: ignore[attr-defined]
            else:
                subprocess.Popen(["lp", "-d", printer_name, str(pdf_path)])
        except OSError:
            logger.warning("could not send %s to printer %s", pdf_path.name, printer_name)

    def print_ticket(self, ticket) -> Path:
        lines = format_ticket_lines(ticket)
        pdf_path = self._render_pdf("Ticket", lines, "tickets", f"orden-{ticket.order_number}-{ticket.occupant}")
        self._dispatch(pdf_path, self.kitchen_printer)
        return pdf_path

    def print_receipt(self, result, cashier: str = "") -> Path:
        lines = format_receipt_lines(result, BusinessConfig.load(), cashier)
        pdf_path = self._render_pdf("Factura", lines, "receipts", f"factura-{result.invoice_number}")
        self._dispatch(pdf_path, self.receipt_printer)
        return pdf_path
