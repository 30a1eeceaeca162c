"""Kitchen, bar and receipt tickets rendered as PDF files for 58mm printers."""

from __future__ import annotations

import logging
import os
import sys
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from reportlab.lib.pagesizes import portrait
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from ..core.models import MenuItem, Order, OrderItem, Settings, Transaction
from ..core.money import fmt_amount, loyalty_points_for
from ..core.paths import PRINTS_DIR

log = logging.getLogger(__name__)

TICKET_CURRENCY = "Rs."
RULE = "-" * 32
DOUBLE_RULE = "=" * 32

_FONT_NAME = "Helvetica"
_FONT_ALIAS = "ChiyaPOSFont"
_FONT_CANDIDATES = [
    "NotoSans-Regular.ttf",
    "dejavusans.ttf",
    "DejaVuSans.ttf",
    "arialuni.ttf",
    "arial.ttf",
    "segoeui.ttf",
]


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


def _register_font() -> str:
    global _FONT_NAME
    if _FONT_ALIAS in pdfmetrics.getRegisteredFontNames():
        _FONT_NAME = _FONT_ALIAS
        return _FONT_NAME

    for folder in _font_search_paths():
        for candidate in _FONT_CANDIDATES:
            path = folder / candidate
            if not path.exists():
                continue
            try:
                pdfmetrics.registerFont(TTFont(_FONT_ALIAS, str(path)))
            except Exception:  # reportlab raises plain Exception subclasses for bad TTFs
                log.debug("font %s could not be registered", path)
                continue
            else:
                _FONT_NAME = _FONT_ALIAS
                return _FONT_NAME
    return _FONT_NAME


def _sanitize_filename(value: str) -> str:
    safe = [ch if ch.isalnum() else "-" for ch in value]
    return "".join(safe).strip("-") or "ticket"


def collapse_items(items: Iterable[OrderItem]) -> List[dict]:
    """Merge repeated lines for the same dish and price, keeping first-seen order."""
    grouped: "OrderedDict[tuple, dict]" = OrderedDict()
    for it in items:
        key = (it.name, it.price)
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = {"name": it.name, "qty": it.qty, "price": it.price, "total": it.line_total}
        else:
            entry["qty"] += it.qty
            entry["total"] += it.line_total
    return list(grouped.values())


def short_order_id(order_id: str) -> str:
    return order_id[-6:]


def _ticket_time(moment: Optional[datetime]) -> str:
    moment = (moment or datetime.now().astimezone()).astimezone()
    return moment.strftime("%I:%M %p")


def split_for_stations(
    items: Iterable[OrderItem],
    menu: Iterable[MenuItem],
    bar_categories: Sequence[str],
) -> Tuple[List[OrderItem], List[OrderItem]]:
    """Return ``(kitchen_items, bar_items)`` by the category of each item's dish."""
    category_of: Mapping[str, str] = {m.id: m.category for m in menu}
    bar = {c.lower() for c in bar_categories}
    kitchen_items: List[OrderItem] = []
    bar_items: List[OrderItem] = []
    for item in items:
        category = category_of.get(item.menu_item_id, "")
        (bar_items if category.lower() in bar else kitchen_items).append(item)
    return kitchen_items, bar_items


def format_kot_lines(
    order: Order,
    *,
    items: Optional[Iterable[OrderItem]] = None,
    title: str = "KITCHEN ORDER TICKET",
    waiter_name: Optional[str] = None,
) -> List[str]:
    lines = [
        DOUBLE_RULE,
        title,
        DOUBLE_RULE,
        f"Table: {order.table_number}",
        f"Time: {_ticket_time(order.created_at)}",
        f"Order: #{short_order_id(order.id)}",
    ]
    if waiter_name:
        lines.append(f"Waiter: {waiter_name}")
    lines.append(RULE)
    for entry in collapse_items(order.items if items is None else items):
        lines.append(f"{entry['qty']}x {entry['name']}")
    if order.notes:
        lines.append(RULE)
        lines.append(f"Notes: {order.notes}")
    lines.append(DOUBLE_RULE)
    return lines


def format_receipt_lines(txn: Transaction, settings: Settings, subtotal: Optional[int] = None) -> List[str]:
    if subtotal is None:
        subtotal = txn.total + txn.discount
    paid_at = txn.paid_at.astimezone().strftime("%Y-%m-%d %H:%M")
    lines = [
        settings.restaurant_name,
        f"Table: {txn.table_number}",
        f"Time: {paid_at}",
        f"Payment: {txn.payment_method}",
        RULE,
    ]
    for entry in collapse_items(txn.items):
        lines.append(f"{entry['qty']} x {entry['name']}")
        unit_txt = fmt_amount(entry["price"], TICKET_CURRENCY)
        total_txt = fmt_amount(entry["total"], TICKET_CURRENCY)
        lines.append(f"   @ {unit_txt} = {total_txt}")
    lines.extend(
        [
            RULE,
            f"Subtotal: {fmt_amount(subtotal, TICKET_CURRENCY)}",
            f"Discount: {fmt_amount(txn.discount, TICKET_CURRENCY)}",
            f"Total: {fmt_amount(txn.total, TICKET_CURRENCY)}",
        ]
    )
    points = loyalty_points_for(txn.total)
    if points and txn.customer_phones:
        lines.append(f"Points earned: {points}")
    if settings.wifi_ssid:
        lines.append(f"WiFi: {settings.wifi_ssid} / {settings.wifi_password}")
    lines.append("Thank you for visiting")
    return lines


def _line_height() -> float:
    return 14.0


def _page_dimensions(line_count: int) -> tuple[float, float]:
    width = 164  # 58mm roll
    base_height = 60
    height = max(base_height, base_height + line_count * _line_height())
    return portrait((width, height))


def render_pdf(title: str, lines: List[str], folder: Path, prefix: str) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    font = _register_font()
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    target = folder / f"{timestamp}-{_sanitize_filename(prefix)}.pdf"
    width, height = _page_dimensions(len(lines) + 4)
    canv = canvas.Canvas(str(target), pagesize=(width, height))
    canv.setTitle(title)
    canv.setAuthor("Chiya POS")
    canv.setFont(font, 9)

    x = 8
    y = height - 18
    for line in lines:
        canv.drawString(x, y, line)
        y -= _line_height()
    canv.showPage()
    canv.save()
    return target


class TicketPrinter:
    """Writes ticket PDFs under ``prints/``; sending them to a device is left to the host."""

    __slots__ = ("root",)

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or PRINTS_DIR

    @property
    def kitchen_dir(self) -> Path:
        return self.root / "kitchen"

    @property
    def bar_dir(self) -> Path:
        return self.root / "bar"

    @property
    def receipts_dir(self) -> Path:
        return self.root / "receipts"

    def print_order_tickets(
        self,
        order: Order,
        settings: Settings,
        menu: Iterable[MenuItem] = (),
        *,
        waiter_name: Optional[str] = None,
    ) -> List[Path]:
        """KOT for a new order; in dual-printer mode bar items get their own ticket."""
        if not settings.kot_printing_enabled:
            return []
        written: List[Path] = []
        if settings.dual_printer_enabled:
            kitchen_items, bar_items = split_for_stations(order.items, menu, settings.bar_categories)
        else:
            kitchen_items, bar_items = list(order.items), []
        if kitchen_items:
            lines = format_kot_lines(order, items=kitchen_items, waiter_name=waiter_name)
            written.append(
                render_pdf("Kitchen Order Ticket", lines, self.kitchen_dir, f"kot-{order.table_number}")
            )
        if bar_items:
            lines = format_kot_lines(order, items=bar_items, title="BAR TICKET", waiter_name=waiter_name)
            written.append(render_pdf("Bar Ticket", lines, self.bar_dir, f"bar-{order.table_number}"))
        log.info("printed %d ticket(s) for order %s", len(written), order.id)
        return written

    def print_receipt(self, txn: Transaction, settings: Settings, subtotal: Optional[int] = None) -> Path:
        lines = format_receipt_lines(txn, settings, subtotal)
        return render_pdf("Receipt", lines, self.receipts_dir, f"receipt-{txn.table_number}")
