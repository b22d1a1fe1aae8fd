"""
Excel workbook export for payout reports and the payout planner.
"""
import io
import logging
from datetime import date, datetime
from typing import List, Optional
import pandas as pd

from dropship_payouts.engine.rates import ChargingPolicy
from dropship_payouts.utils import safe_filename_part

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

ORDER_DETAIL_COLUMNS = [
    'Order ID', 'Waybill', 'Product', 'SKU/UID', 'Dropshipper',
    'Order Date', 'Delivered Date', 'Shipped Qty', 'Delivered Qty',
    'COD Rate', 'COD Received', 'Shipping Cost', 'Product Cost',
    'Net Payable', 'Status', 'Shipping Provider', 'Weight (kg)',
    'Shipping Rate', 'Rate Source'
]

POLICY_FORMULAS = {
    ChargingPolicy.FLAT: 'Quantity x Rate',
    ChargingPolicy.PER_KG: 'Quantity x Weight (kg) x Rate per kg',
}


def _money(value) -> float:
    # Decimal totals are computed upstream; Excel cells hold floats
    return float(value if value is not None else 0)


def _date(value) -> str:
    if value is None:
        return ''
    if isinstance(value, (date, datetime)):
        return value.strftime('%Y-%m-%d')
    return str(value)


def payout_report_filename(date_from, date_to, dropshipper_email: Optional[str] = None) -> str:
    """payout-report_<from>_to_<to>_<email prefix or all>.xlsx"""
    suffix = safe_filename_part(dropshipper_email.split('@')[0]) if dropshipper_email else 'all'
    return f"payout-report_{_date(date_from)}_to_{_date(date_to)}_{suffix}.xlsx"


def planner_filename(plan) -> str:
    email = plan.dropshipper_email
    suffix = safe_filename_part(email.split('@')[0]) if email else 'all'
    return (
        f"PayoutPlanner_{suffix}_{_date(plan.range_from)}_to_{_date(plan.range_to)}"
        f"_D+{plan.settings.cutoff_offset_days}_{plan.settings.frequency.value}.xlsx"
    )


def _write_sheet(writer: pd.ExcelWriter, df: pd.DataFrame, sheet_name: str, header_format) -> None:
    df.to_excel(writer, sheet_name=sheet_name, index=False)
    worksheet = writer.sheets[sheet_name]

    for col_num, value in enumerate(df.columns.values):
        worksheet.write(0, col_num, value, header_format)

    # Auto-adjust column widths
    for idx, col in enumerate(df.columns):
        longest = df[col].astype(str).map(len).max() if not df.empty else 0
        worksheet.set_column(idx, idx, max(longest, len(str(col))) + 2)


def _header_format(writer: pd.ExcelWriter):
    return writer.book.add_format({
        'bold': True,
        'bg_color': '#4CAF50',
        'font_color': 'white',
        'border': 1
    })


def _window(window) -> str:
    return f"{_date(window.start)} to {_date(window.end)}"


def summary_frame(result) -> pd.DataFrame:
    summary = result.summary
    records = [
        ('Generated on', datetime.now().strftime('%Y-%m-%d %H:%M'), ''),
        ('Dropshipper', result.dropshipper_email or 'All Dropshippers', ''),
        ('Order Date Range', _window(result.order_window), 'Drives shipping charges'),
        ('Delivered Date Range', _window(result.delivered_window), 'Drives COD received and product cost'),
        ('Charging Policy', summary.charging_policy.value, POLICY_FORMULAS[summary.charging_policy]),
        ('Orders with Shipping Charges', summary.orders_with_shipping_charges, ''),
        ('Orders with Product Amount', summary.orders_with_product_amount, ''),
        ('Orders with COD Amount', summary.orders_with_cod_amount, ''),
        ('Total Orders Processed', summary.total_orders_processed, ''),
        ('Total Shipping Charges', _money(summary.shipping_total), 'Order date range, cancelled orders excluded'),
        ('Total COD Received', _money(summary.cod_total), 'Delivered COD orders in delivered date range'),
        ('Total Product Cost', _money(summary.product_cost_total), 'Delivered orders in delivered date range'),
        ('RTS/RTO Reversal', _money(summary.reversal_total), 'Confirmed reversals in scope'),
        ('FINAL PAYOUT', _money(summary.final_payable), 'COD - Product Cost - Shipping - RTS/RTO'),
        ('Orders Missing Product Price', summary.missing_price_count, 'Product cost counted as 0'),
        ('Orders on Default Shipping Rate', summary.default_rate_count, ''),
    ]
    for source, count in summary.rate_source_breakdown.items():
        records.append((f"Rate Source: {source}", count, ''))
    for warning in result.warnings:
        records.append(('Warning', warning, ''))
    return pd.DataFrame(records, columns=['Metric', 'Value', 'Description'])


def order_details_frame(rows: List) -> pd.DataFrame:
    return pd.DataFrame([
        [
            row.order_id, row.waybill or '', row.product_name, row.sku or row.product_uid,
            row.dropshipper_email, _date(row.order_date), _date(row.delivered_date),
            row.shipped_qty, row.delivered_qty, _money(row.product_value), _money(row.cod_received),
            _money(row.shipping_cost), _money(row.product_cost), _money(row.payable),
            row.status, row.shipping_provider, float(row.product_weight),
            _money(row.shipping_rate), row.rate_source.value,
        ]
        for row in rows
    ], columns=ORDER_DETAIL_COLUMNS)


def shipping_details_frame(rows: List) -> pd.DataFrame:
    return pd.DataFrame([
        [
            row.order_id, row.waybill or '', row.product_name, row.dropshipper_email,
            row.shipping_provider, _date(row.order_date), row.shipped_qty,
            float(row.product_weight), _money(row.shipping_rate), row.rate_source.value,
            _money(row.shipping_cost), row.status,
        ]
        for row in rows if row.shipped_qty
    ], columns=[
        'Order ID', 'Waybill', 'Product', 'Dropshipper', 'Shipping Provider', 'Order Date',
        'Quantity', 'Weight (kg)', 'Shipping Rate (Rs.)', 'Rate Source', 'Shipping Cost (Rs.)', 'Status'
    ])


def cod_details_frame(rows: List) -> pd.DataFrame:
    return pd.DataFrame([
        [
            row.order_id, row.waybill or '', row.product_name, row.dropshipper_email,
            _date(row.delivered_date), row.delivered_qty, _money(row.product_value),
            _money(row.cod_received), row.status,
        ]
        for row in rows if row.cod_received > 0
    ], columns=[
        'Order ID', 'Waybill', 'Product', 'Dropshipper', 'Delivered Date', 'Delivered Qty',
        'COD Rate (Rs.)', 'Total COD Received (Rs.)', 'Status'
    ])


def product_cost_frame(rows: List) -> pd.DataFrame:
    return pd.DataFrame([
        [
            row.order_id, row.waybill or '', row.product_name, row.sku or row.product_uid,
            row.dropshipper_email, row.delivered_qty, _money(row.product_cost_per_unit),
            _money(row.product_cost), row.status,
            'Found in Database' if row.price_configured else 'Missing',
        ]
        for row in rows if row.delivered_qty
    ], columns=[
        'Order ID', 'Waybill', 'Product', 'SKU/UID', 'Dropshipper', 'Delivered Qty',
        'Product Cost per Unit (Rs.)', 'Total Product Cost (Rs.)', 'Status', 'Cost Source'
    ])


def adjustments_frame(adjustments: List) -> pd.DataFrame:
    return pd.DataFrame([
        [a.order_id, a.dropshipper_email, a.product_uid, a.reason, _money(a.amount), a.reference or '']
        for a in adjustments
    ], columns=['Order ID', 'Dropshipper', 'SKU/UID', 'Reason', 'Amount', 'Reference'])


def build_payout_workbook(result) -> bytes:
    """
    Render a payout result as an xlsx workbook.

    Args:
        result: PayoutResult with rows, summary and windows

    Returns:
        Workbook bytes
    """
    try:
        output = io.BytesIO()
        with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
            header_format = _header_format(writer)
            _write_sheet(writer, summary_frame(result), 'Summary', header_format)
            _write_sheet(writer, order_details_frame(result.rows), 'Order Details', header_format)
            _write_sheet(writer, shipping_details_frame(result.rows), 'Shipping Details', header_format)
            _write_sheet(writer, cod_details_frame(result.rows), 'COD Details', header_format)
            _write_sheet(writer, product_cost_frame(result.rows), 'Product Cost Details', header_format)
            if result.adjustments:
                _write_sheet(writer, adjustments_frame(result.adjustments), 'Adjustments', header_format)
        return output.getvalue()
    except Exception as e:
        logger.error(f"Error generating payout workbook: {e}")
        raise


def planner_runs_frame(plan) -> pd.DataFrame:
    records = []
    for run, result in plan.results:
        s = result.summary
        records.append({
            'Run Date': _date(run.run_date),
            'Order Window': f"{_date(run.order_window.start)} to {_date(run.order_window.end)}",
            'Delivered Window': f"{_date(run.delivered_window.start)} to {_date(run.delivered_window.end)}",
            'Orders': s.total_orders_processed,
            'Shipping Total': _money(s.shipping_total),
            'COD Total': _money(s.cod_total),
            'Product Cost Total': _money(s.product_cost_total),
            'RTS/RTO Reversal': _money(s.reversal_total),
            'Final Payable': _money(s.final_payable),
            'Status': 'Scheduled',
        })
    for skipped in plan.schedule.skipped:
        records.append({
            'Run Date': _date(skipped.run_date),
            'Order Window': f"{_date(skipped.order_window.start)} to {_date(skipped.order_window.end)}",
            'Delivered Window': f"{_date(skipped.delivered_window.start)} to {_date(skipped.delivered_window.end)}",
            'Status': f"Skipped: {skipped.reason}",
        })
    df = pd.DataFrame(records, columns=[
        'Run Date', 'Order Window', 'Delivered Window', 'Orders', 'Shipping Total', 'COD Total',
        'Product Cost Total', 'RTS/RTO Reversal', 'Final Payable', 'Status'
    ])
    return df.sort_values('Run Date', kind='stable').reset_index(drop=True)


def build_planner_workbook(plan) -> bytes:
    """Runs sheet plus one order-details sheet per scheduled run."""
    try:
        output = io.BytesIO()
        with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
            header_format = _header_format(writer)
            _write_sheet(writer, planner_runs_frame(plan), 'Runs', header_format)
            for run, result in plan.results:
                _write_sheet(writer, order_details_frame(result.rows), f"Run {_date(run.run_date)}", header_format)
        return output.getvalue()
    except Exception as e:
        logger.error(f"Error generating planner workbook: {e}")
        raise
