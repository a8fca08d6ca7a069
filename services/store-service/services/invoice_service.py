"""
Invoice PDF generation.

Renders an order snapshot to a PDF file with fpdf2 and returns the URL
path it is served under.
"""
import logging
import os
from datetime import datetime
from typing import Any, Dict

from fpdf import FPDF

from config import CURRENCY, INVOICE_DIR, INVOICE_URL_PREFIX, STORE_NAME

logger = logging.getLogger(__name__)


def _latin1(text: Any) -> str:
    """Core PDF fonts only cover latin-1."""
    return str(text).encode("latin-1", "replace").decode("latin-1")


class InvoiceGenerator:
    """
    Generates order invoices.

    Layout: store header, order number and date, billing address,
    line items table, pricing breakdown.
    """

    PAGE_WIDTH = 210
    MARGIN = 20
    PRIMARY_COLOR = (45, 80, 22)
    TEXT_COLOR = (50, 50, 50)

    # Column widths for the items table (mm)
    COLUMNS = (("Item", 70), ("Variant", 45), ("Qty", 15), ("Unit", 20), ("Amount", 20))

    def __init__(
        self,
        output_dir: str = INVOICE_DIR,
        url_prefix: str = INVOICE_URL_PREFIX,
        store_name: str = STORE_NAME,
        currency: str = CURRENCY
    ):
        self.output_dir = output_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.store_name = store_name
        self.currency = currency

    def generate(self, order: Dict[str, Any]) -> str:
        """
        Write the invoice for an order.

        Args:
            order: Order snapshot (see ``OrderService.invoice_snapshot``)

        Returns:
            URL path of the generated invoice
        """
        filename = f"invoice-{order['order_number']}.pdf"
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, filename)

        pdf = FPDF()
        pdf.add_page()
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.set_font("Helvetica", size=10)

        self._add_header(pdf, order)
        self._add_address(pdf, order)
        self._add_items(pdf, order)
        self._add_totals(pdf, order)

        pdf.output(path)
        logger.info("Invoice generated", extra={
            "order_number": order["order_number"],
            "path": path
        })
        return f"{self.url_prefix}/{filename}"

    def _add_header(self, pdf: FPDF, order: Dict[str, Any]) -> None:
        pdf.set_font("Helvetica", "B", 18)
        pdf.set_text_color(*self.PRIMARY_COLOR)
        pdf.cell(0, 12, _latin1(self.store_name), align="C", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "B", 14)
        pdf.cell(0, 10, "TAX INVOICE", align="C", new_x="LMARGIN", new_y="NEXT")

        pdf.set_draw_color(*self.PRIMARY_COLOR)
        y_pos = pdf.get_y()
        pdf.line(self.MARGIN, y_pos, self.PAGE_WIDTH - self.MARGIN, y_pos)
        pdf.ln(6)

        created_at = order.get("created_at")
        if isinstance(created_at, datetime):
            created_at = created_at.strftime("%d %b %Y")

        pdf.set_font("Helvetica", size=10)
        pdf.set_text_color(*self.TEXT_COLOR)
        pdf.cell(0, 6, _latin1(f"Invoice No: {order['order_number']}"), new_x="LMARGIN", new_y="NEXT")
        pdf.cell(0, 6, _latin1(f"Date: {created_at or '-'}"), new_x="LMARGIN", new_y="NEXT")
        pdf.cell(0, 6, _latin1(f"Email: {order.get('customer_email', '')}"), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(4)

    def _add_address(self, pdf: FPDF, order: Dict[str, Any]) -> None:
        address = order.get("shipping_address") or {}
        lines = [
            address.get("full_name"),
            address.get("address_line1"),
            address.get("address_line2"),
            ", ".join(filter(None, [address.get("city"), address.get("state"), address.get("pincode")])),
            address.get("phone"),
        ]
        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(0, 7, "Bill To:", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", size=10)
        for line in filter(None, lines):
            pdf.cell(0, 5, _latin1(line), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(6)

    def _add_items(self, pdf: FPDF, order: Dict[str, Any]) -> None:
        pdf.set_font("Helvetica", "B", 10)
        pdf.set_fill_color(240, 240, 240)
        for title, width in self.COLUMNS:
            pdf.cell(width, 8, title, border=1, fill=True)
        pdf.ln()

        pdf.set_font("Helvetica", size=9)
        for item in order["items"]:
            values = (
                item["product_name"],
                item["variant_details"],
                str(item["quantity"]),
                str(item["unit_price"]),
                str(item["amount"]),
            )
            for (_, width), value in zip(self.COLUMNS, values):
                pdf.cell(width, 7, _latin1(value), border=1)
            pdf.ln()
        pdf.ln(4)

    def _add_totals(self, pdf: FPDF, order: Dict[str, Any]) -> None:
        pricing = order["pricing"]
        rows = [
            ("Subtotal", pricing["subtotal"]),
            (f"Tax ({pricing['tax_rate']}%)", pricing["tax"]),
            ("Delivery", pricing["delivery_charge"]),
        ]
        if pricing.get("discount"):
            rows.append(("Discount", f"-{pricing['discount']}"))

        label_width = 150
        for label, value in rows:
            pdf.cell(label_width, 6, _latin1(label), align="R")
            pdf.cell(20, 6, _latin1(value), align="R", new_x="LMARGIN", new_y="NEXT")

        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(label_width, 8, _latin1(f"Total ({self.currency})"), align="R")
        pdf.cell(20, 8, _latin1(pricing["total"]), align="R", new_x="LMARGIN", new_y="NEXT")
