"""Outbound message texts.

A fixed set of Spanish templates: the customer message sent with the PDF,
the salesperson notification and the admin summary of the daily report.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from core.models.documents import CounterpartyContact, DocumentCategory, PendingDocument

TEST_HEADER = "🧪 *MODO PRUEBA - MENSAJE DE PRUEBA*"


def format_amount(amount: Decimal) -> str:
    """Argentine number format: 1234567.5 -> '1.234.567,50'."""
    quantized = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if quantized < 0 else ""
    integer, _, cents = f"{abs(quantized):.2f}".partition(".")
    groups = []
    while integer:
        groups.insert(0, integer[-3:])
        integer = integer[:-3]
    return f"{sign}{'.'.join(groups)},{cents}"


def delivery_status_line(contact: Optional[CounterpartyContact]) -> str:
    """How the customer can be reached, for the salesperson's benefit.

    ``None`` means the contact lookup failed.
    """
    if contact is None:
        return "No se pudo verificar los datos de contacto del cliente. Por favor revisar manualmente"
    if contact.email and contact.cellular:
        return (
            f"Este documento fue enviado al cliente al mail {contact.email}, "
            f"y al numero {contact.cellular}"
        )
    if contact.email:
        return (
            f"Este documento se envio al mail {contact.email}. "
            "El cliente no registra numero de celular"
        )
    if contact.cellular:
        return (
            f"Este documento se envio al numero {contact.cellular}. "
            "El cliente no registra casilla de mail"
        )
    return "El cliente no registra mail ni numero de celular en su ficha. Por favor reenviar"


class MessageComposer:
    """Renders message text from document fields."""

    def __init__(self, test_mode: bool = False, company_name: str = ""):
        self.test_mode = test_mode
        self.company_name = company_name

    def customer_message(self, document: PendingDocument) -> str:
        lines = []
        if self.test_mode:
            lines += [TEST_HEADER, ""]

        if document.category is DocumentCategory.INTERNAL:
            lines += ["📄 *NUEVO DOCUMENTO EMITIDO*", "", f"📋 Comprobante: *{document.number}*"]
        else:
            lines += ["🧾 *NUEVA FACTURA EMITIDA*", f"📋 Factura: *{document.number}*"]

        lines += [
            f"👤 Cliente: {document.counterparty_name}",
            f"💰 Total: ${format_amount(document.amount)}",
            f"📅 Fecha: {document.issue_date.isoformat()}",
        ]
        # Internal receipts never carry comments to the customer
        if document.comment and document.category is DocumentCategory.PRIMARY:
            lines.append(f"📝 Comentarios: {document.comment}")

        lines += ["", "📎 Adjunto encontrarás tu factura en PDF.", ""]
        if self.test_mode:
            lines += ["🧪 *Este es un mensaje de prueba*", "En producción iría al cliente real", ""]
        lines.append("Gracias por tu compra!")
        return "\n".join(lines)

    def salesperson_message(
        self,
        document: PendingDocument,
        salesperson_name: str,
        contact: Optional[CounterpartyContact],
    ) -> str:
        lines = []
        if self.test_mode:
            lines += [TEST_HEADER, ""]

        if document.category is DocumentCategory.INTERNAL:
            lines += [
                "📄 *NUEVO DOCUMENTO*", "",
                f"Hola {salesperson_name},", "",
                "Se ha emitido el siguiente comprobante de uso interno "
                f"para el cliente {document.counterparty_name}:", "",
                f"📋 *Comprobante Nº:* {document.number}",
            ]
        else:
            lines += [
                "🧾 *NUEVA FACTURA EMITIDA*", "",
                f"Hola {salesperson_name},", "",
                f"Se ha emitido la siguiente factura para el cliente {document.counterparty_name}:", "",
                f"📋 *Factura Nº:* {document.number}",
            ]
        lines += [
            f"📅 *Fecha:* {document.issue_date.isoformat()}",
            f"💰 *Total:* ${format_amount(document.amount)}",
            "",
            f"📞 *Estado de entrega:* {delivery_status_line(contact)}",
            "",
            "Si tiene alguna consulta, no dude en contactarnos.",
            "",
            "Saludos cordiales,",
        ]
        if self.company_name:
            lines.append(self.company_name)
        if self.test_mode:
            lines += ["", "🧪 *Este es un mensaje de prueba*", f"En producción iría al vendedor: {salesperson_name}"]
        return "\n".join(lines)

    def missed_summary(self, missed_count: int, report_date: date, report_recipients: str) -> str:
        lines = [
            "📊 *REPORTE DIARIO*",
            f"📅 {report_date.strftime('%d/%m/%Y')}",
            f"📋 {missed_count} documento(s) no enviados",
            "",
        ]
        if report_recipients:
            lines.append(f"📧 Reporte detallado enviado a {report_recipients}")
        return "\n".join(lines)
