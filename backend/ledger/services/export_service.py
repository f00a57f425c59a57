"""
Stock Ledger Export Service

Generates CSV and XLSX exports of stock movements, including the before/after
snapshots, so a product's history can be audited outside the system.
"""

import csv
import logging
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Optional

from django.db.models import QuerySet
from django.utils import timezone
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from ledger.choices import INBOUND_MOVEMENT_TYPES, OUTBOUND_MOVEMENT_TYPES
from ledger.models import StockMovement
from utils.constants import REFERENCE_PRODUCTION

logger = logging.getLogger(__name__)


def _timestamp(value):
    return timezone.localtime(value).strftime('%Y-%m-%d %H:%M:%S') if value else ''


def _document(movement):
    if movement.delivery_id:
        return movement.delivery.code
    if movement.delivery_note_id:
        return movement.delivery_note.code
    if movement.management_stock_item_id:
        return movement.management_stock_item.management_stock.code
    if movement.production_log_item_id:
        return REFERENCE_PRODUCTION.format(id=movement.production_log_item.production_log_id)
    return ''


class MovementExportService:
    """
    Service for exporting the stock movement ledger to CSV and XLSX.
    """

    # (header, column width, value getter, alignment)
    COLUMNS = [
        ('Date', 20, lambda m: _timestamp(m.created_at), 'center'),
        ('Product Code', 15, lambda m: m.product.code, 'left'),
        ('Product Name', 28, lambda m: m.product.name, 'left'),
        ('Movement Type', 20, lambda m: m.get_movement_type_display(), 'center'),
        ('Quantity', 12, lambda m: m.quantity, 'number'),
        ('Change', 12, lambda m: m.quantity_change, 'number'),
        ('Stock Before', 14, lambda m: m.quantity_before, 'number'),
        ('Stock After', 14, lambda m: m.quantity_after, 'number'),
        ('Reference', 30, lambda m: m.reference or '', 'left'),
        ('Document', 22, _document, 'left'),
        ('Reverses Movement', 18, lambda m: m.reversal_of_id or '', 'center'),
        ('Performed By', 20, lambda m: m.performed_by or '', 'left'),
        ('Notes', 30, lambda m: m.notes or '', 'left'),
    ]

    @staticmethod
    def _prepare(movements: QuerySet) -> QuerySet:
        return movements.select_related(
            'product',
            'delivery',
            'delivery_note',
            'management_stock_item__management_stock',
            'production_log_item',
        ).order_by('created_at', 'id')

    @staticmethod
    def export_to_csv(movements: QuerySet) -> StringIO:
        movements = MovementExportService._prepare(movements)
        logger.info(f"Generating CSV export with {movements.count()} movements")

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow([column[0] for column in MovementExportService.COLUMNS])
        for movement in movements:
            writer.writerow([getter(movement) for _, _, getter, _ in MovementExportService.COLUMNS])

        output.seek(0)
        return output

    @staticmethod
    def export_to_xlsx(movements: QuerySet) -> BytesIO:
        """
        Export movements to XLSX with a styled header, a frozen header row,
        inbound/outbound colouring on the change column and a net total.
        """
        movements = MovementExportService._prepare(movements)
        logger.info(f"Generating XLSX export with {movements.count()} movements")

        wb = Workbook()
        ws = wb.active
        ws.title = "Stock Movements"

        header_font = Font(name='Calibri', size=11, bold=True, color='FFFFFF')
        header_fill = PatternFill(start_color='4A5568', end_color='4A5568', fill_type='solid')
        inbound_fill = PatternFill(start_color='D4EDDA', end_color='D4EDDA', fill_type='solid')
        outbound_fill = PatternFill(start_color='F8D7DA', end_color='F8D7DA', fill_type='solid')
        summary_fill = PatternFill(start_color='E2E8F0', end_color='E2E8F0', fill_type='solid')
        alignments = {
            'left': Alignment(horizontal='left', vertical='center'),
            'center': Alignment(horizontal='center', vertical='center'),
            'number': Alignment(horizontal='right', vertical='center'),
        }
        border = Border(
            left=Side(style='thin', color='CBD5E0'),
            right=Side(style='thin', color='CBD5E0'),
            top=Side(style='thin', color='CBD5E0'),
            bottom=Side(style='thin', color='CBD5E0')
        )
        change_column = 6

        for col_num, (header, width, _, _) in enumerate(MovementExportService.COLUMNS, 1):
            cell = ws.cell(row=1, column=col_num, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
            cell.border = border
            ws.column_dimensions[cell.column_letter].width = width

        row_num = 2
        net_change = 0
        for movement in movements:
            for col_num, (_, _, getter, align) in enumerate(MovementExportService.COLUMNS, 1):
                cell = ws.cell(row=row_num, column=col_num, value=getter(movement))
                cell.alignment = alignments[align]
                cell.border = border
                if align == 'number':
                    cell.number_format = '#,##0'

            change_cell = ws.cell(row=row_num, column=change_column)
            if movement.movement_type in INBOUND_MOVEMENT_TYPES or movement.quantity_change > 0:
                change_cell.fill = inbound_fill
            elif movement.movement_type in OUTBOUND_MOVEMENT_TYPES or movement.quantity_change < 0:
                change_cell.fill = outbound_fill

            net_change += movement.quantity_change
            row_num += 1

        ws.freeze_panes = 'A2'

        row_num += 1
        for col_num, value in ((change_column - 1, 'NET CHANGE'), (change_column, net_change)):
            cell = ws.cell(row=row_num, column=col_num, value=value)
            cell.font = Font(name='Calibri', size=11, bold=True)
            cell.fill = summary_fill
            cell.alignment = alignments['number']
            cell.border = border

        output = BytesIO()
        wb.save(output)
        output.seek(0)
        return output

    @staticmethod
    def get_movements_for_date_range(
        start_date: date,
        end_date: date,
        product_id: Optional[int] = None
    ) -> QuerySet:
        start_datetime = timezone.make_aware(datetime.combine(start_date, datetime.min.time()))
        end_datetime = timezone.make_aware(datetime.combine(end_date, datetime.max.time()))

        movements = StockMovement.objects.filter(
            created_at__gte=start_datetime,
            created_at__lte=end_datetime
        )
        if product_id:
            movements = movements.filter(product_id=product_id)
        return movements
