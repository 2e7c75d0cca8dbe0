"""Contract PDF rendering with reportlab."""

from __future__ import annotations

import base64
import binascii
import io
import logging
from datetime import date
from typing import Optional

from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

TERMS = [
    '1. Payment: 50% deposit required to begin work, balance due upon completion.',
    '2. Timeline: Work will commence within 2 weeks of signed contract and deposit.',
    '3. Weather: Delays due to weather conditions are beyond our control.',
    '4. Materials: All materials are guaranteed for one growing season.',
    '5. Changes: Any changes to this contract must be in writing and signed by both parties.',
    '6. Warranty: We warranty our workmanship for one full year from completion.',
]

MARGIN = 50
TOP = 60
BOTTOM = 70


def decode_signature(signature_data: str) -> bytes:
    """Image bytes from a ``data:image/...;base64,`` URL or bare base64."""
    payload = signature_data.split(',', 1)[1] if signature_data.startswith('data:') else signature_data
    return base64.b64decode(payload, validate=True)


class _Page:
    """Top-down cursor over a reportlab canvas."""

    def __init__(self, pdf: canvas.Canvas) -> None:
        self.pdf = pdf
        self.width, self.height = letter
        self.y = TOP

    def ensure(self, needed: float) -> None:
        if self.y + needed > self.height - BOTTOM:
            self.pdf.showPage()
            self.y = TOP

    def text(self, x, value, size=11, bold=False, align='left', advance=16):
        self.ensure(advance)
        self.pdf.setFont('Helvetica-Bold' if bold else 'Helvetica', size)
        baseline = self.height - self.y
        if align == 'center':
            self.pdf.drawCentredString(x, baseline, value)
        elif align == 'right':
            self.pdf.drawRightString(x, baseline, value)
        else:
            self.pdf.drawString(x, baseline, value)
        self.y += advance

    def wrapped(self, value, size=11, advance=14):
        for line in simpleSplit(value, 'Helvetica', size, self.width - 2 * MARGIN):
            self.text(MARGIN, line, size=size, advance=advance)

    def rule(self, x1, x2, gap=10):
        self.pdf.line(x1, self.height - self.y, x2, self.height - self.y)
        self.y += gap


def render_contract(session, estimate, company_name: str,
                    signature_data: Optional[str] = None,
                    today: Optional[date] = None) -> bytes:
    """Render the landscaping contract for ``session`` and its estimate."""
    today = today or date.today()
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=letter)
    pdf.setTitle(f"Contract {session.contract_number}")
    page = _Page(pdf)
    center = page.width / 2

    page.text(center, 'LANDSCAPING CONTRACT', size=22, bold=True, align='center', advance=28)
    page.text(center, company_name, size=16, align='center', advance=20)
    page.text(center, 'Professional Landscaping Services', size=12, align='center', advance=34)

    page.text(MARGIN, 'CONTRACT DETAILS', size=14, bold=True, advance=20)
    for detail in (
        f"Date: {today.strftime('%m/%d/%Y')}",
        f"Contract #: {session.contract_number}",
        f"Client: {session.client_name}",
        f"Address: {session.client_address or 'N/A'}",
        f"Phone: {session.client_phone or 'N/A'}",
        f"Email: {session.client_email or 'N/A'}",
    ):
        page.text(MARGIN, detail)
    page.y += 12

    page.text(MARGIN, 'PROJECT DESCRIPTION', size=14, bold=True, advance=20)
    page.wrapped(session.notes or 'Professional landscaping services as discussed and agreed upon.')
    page.y += 12

    page.text(MARGIN, 'PROJECT ESTIMATE', size=14, bold=True, advance=20)
    col_qty, col_unit, col_total = page.width - 200, page.width - 120, page.width - MARGIN
    page.ensure(30)
    page.text(MARGIN, 'Description', bold=True, advance=0)
    page.text(col_qty, 'Qty', bold=True, align='right', advance=0)
    page.text(col_unit, 'Unit Price', bold=True, align='right', advance=0)
    page.text(col_total, 'Total', bold=True, align='right', advance=8)
    page.rule(MARGIN, page.width - MARGIN, gap=14)

    for item in estimate.line_items:
        names = simpleSplit(item.name or '', 'Helvetica', 11, col_qty - MARGIN - 40) or ['']
        page.ensure(16 * len(names))
        page.text(col_qty, str(item.quantity), align='right', advance=0)
        page.text(col_unit, f"${item.selected_price:,.2f}", align='right', advance=0)
        page.text(col_total, f"${item.line_total:,.2f}", align='right', advance=0)
        for line in names:
            page.text(MARGIN, line)

    page.y += 6
    page.rule(page.width - 220, page.width - MARGIN, gap=16)
    for label, value in (
        ('Subtotal', estimate.subtotal),
        ('Discount', estimate.discount_amount),
        ('Tax', estimate.tax_amount),
        ('Total', estimate.final_amount),
    ):
        if label in ('Discount', 'Tax') and not value:
            continue
        page.text(col_total, f"{label}: ${float(value or 0):,.2f}", bold=True, align='right')
    page.y += 20

    page.text(MARGIN, 'TERMS AND CONDITIONS', size=14, bold=True, advance=20)
    for term in TERMS:
        page.wrapped(term, size=10, advance=13)
        page.y += 4

    page.ensure(150)
    page.y += 20
    page.text(MARGIN, 'SIGNATURES', size=12, bold=True, advance=30)
    page.text(MARGIN, 'Client Signature:', size=12, advance=0)
    if signature_data:
        try:
            image = ImageReader(io.BytesIO(decode_signature(signature_data)))
            pdf.drawImage(image, MARGIN + 110, page.height - page.y - 2, width=150, height=36,
                          mask='auto', preserveAspectRatio=True)
        except (binascii.Error, ValueError, OSError) as e:
            logger.warning("could not embed signature image: %s", e)
    page.rule(MARGIN + 110, MARGIN + 290, gap=18)
    page.text(MARGIN + 110, f"Date: {today.strftime('%m/%d/%Y')}", size=12, advance=40)

    page.text(MARGIN, f"{company_name} Representative:", size=12, advance=0)
    page.rule(MARGIN + 230, MARGIN + 410, gap=18)
    page.text(MARGIN + 230, 'Date: _______________', size=12)

    pdf.showPage()
    pdf.save()
    return buf.getvalue()
