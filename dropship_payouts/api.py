from fastapi import FastAPI, Depends, HTTPException, File, UploadFile, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import asdict, replace
from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from dropship_payouts.database.config import get_db
from dropship_payouts.database.models import ReconciliationRecord
from dropship_payouts.data_import import db_operations
from dropship_payouts.data_import.settings_import import import_settings
from dropship_payouts.engine.records import DateWindow, OrderRecord
from dropship_payouts.engine.reconciliation import ReconciliationEngine
from dropship_payouts.engine.scheduler import SettlementSettings
from dropship_payouts.exceptions import (
    PayoutEngineError, PayoutRequestError, ReconciliationValidationError,
    DuplicateReconciliationError, StaleAnchorError
)
from dropship_payouts import processors
from dropship_payouts.reporting import (
    XLSX_MEDIA_TYPE, build_payout_workbook, build_planner_workbook,
    payout_report_filename, planner_filename
)
from dropship_payouts.validators import (
    PayoutRequestValidator, ProductPriceValidator, ShippingRateValidator,
    DefaultShippingRateValidator, OrderBatchValidator, ReconcileValidator,
    AutoDetectValidator, SettlementSettingsValidator, SettlementRunsValidator,
    SettlementExportValidator
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Dropship Payouts API")

ERROR_STATUS = {
    PayoutRequestError: 400,
    ReconciliationValidationError: 400,
    DuplicateReconciliationError: 409,
    StaleAnchorError: 409,
}


@app.exception_handler(PayoutEngineError)
async def handle_engine_error(request: Request, exc: PayoutEngineError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Database error"})


def _xlsx_response(content: bytes, filename: str, headers: Optional[dict] = None) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"', **(headers or {})}
    )


def _order_dict(record: OrderRecord) -> dict:
    data = asdict(record)
    data["normalized_status"] = record.normalized_status.value
    data["rts_rto_status"] = record.normalized_status.label
    return data


def _reconciliation_dict(record: ReconciliationRecord) -> dict:
    return {
        "id": record.id,
        "order_id": record.order_id,
        "waybill": record.waybill,
        "dropshipper_email": record.dropshipper_email,
        "product_uid": record.product_uid,
        "original_payout_id": record.original_payout_id,
        "original_paid_amount": record.original_paid_amount,
        "reversal_amount": record.reversal_amount,
        "rts_rto_status": record.rts_rto_status,
        "rts_rto_date": record.rts_rto_date,
        "reconciled_on": record.reconciled_on,
        "reconciled_by": record.reconciled_by,
        "notes": record.notes,
        "status": record.status,
        "applied_export_id": record.applied_export_id,
    }


# Dropshippers

@app.get("/dropshippers", response_model=List[str])
def get_dropshippers(db: Session = Depends(get_db)):
    """List dropshippers that have orders."""
    return processors.get_dropshippers(db)


@app.get("/dropshippers/{email}/date-ranges")
def get_dropshipper_date_ranges(email: str, db: Session = Depends(get_db)):
    """Earliest/latest order and delivered dates for a dropshipper ("all" for everyone)."""
    return processors.get_dropshipper_date_ranges(db, email)


# Payouts

@app.post("/payouts/calculate")
def calculate_payouts(request: PayoutRequestValidator, db: Session = Depends(get_db)):
    """Calculate payouts over an order window and a delivered window."""
    return processors.calculate_payouts(
        db,
        request.order_date_from,
        request.order_date_to,
        request.delivered_date_from,
        request.delivered_date_to,
        dropshipper_email=request.dropshipper_email,
        charging_policy=request.charging_policy,
    )


@app.post("/payouts/export")
def export_payouts(request: PayoutRequestValidator, db: Session = Depends(get_db)):
    """Download the payout report workbook for the given windows."""
    result = processors.compute_payouts(
        db,
        DateWindow(request.order_date_from, request.order_date_to),
        DateWindow(request.delivered_date_from, request.delivered_date_to),
        request.dropshipper_email,
        request.charging_policy,
    )
    filename = payout_report_filename(request.order_date_from, request.order_date_to, request.dropshipper_email)
    return _xlsx_response(build_payout_workbook(result), filename)


@app.get("/missing-data")
def get_missing_data(dropshipper_email: Optional[str] = None, db: Session = Depends(get_db)):
    """Products without prices and product/carrier pairs without rates."""
    return processors.get_missing_data(db, dropshipper_email)


# Configuration store

@app.get("/product-prices")
def get_product_prices(dropshipper_email: Optional[str] = None, db: Session = Depends(get_db)):
    return [asdict(price.to_config()) for price in db_operations.get_product_prices(db, dropshipper_email)]


@app.post("/product-prices", status_code=201)
def upsert_product_price(request: ProductPriceValidator, db: Session = Depends(get_db)):
    price = db_operations.upsert_product_price(db, request.model_dump())
    return asdict(price.to_config())


@app.delete("/product-prices")
def delete_product_price(dropshipper_email: str, product_uid: str, db: Session = Depends(get_db)):
    if not db_operations.delete_product_price(db, dropshipper_email, product_uid):
        raise HTTPException(status_code=404, detail="Product price not found")
    return {"deleted": True}


@app.get("/shipping-rates")
def get_shipping_rates(product_uid: Optional[str] = None, db: Session = Depends(get_db)):
    return [asdict(rate.to_config()) for rate in db_operations.get_shipping_rates(db, product_uid)]


@app.post("/shipping-rates", status_code=201)
def upsert_shipping_rate(request: ShippingRateValidator, db: Session = Depends(get_db)):
    rate = db_operations.upsert_shipping_rate(db, request.model_dump())
    return asdict(rate.to_config())


@app.delete("/shipping-rates")
def delete_shipping_rate(
    product_uid: str,
    product_weight: Decimal,
    shipping_provider: str,
    db: Session = Depends(get_db)
):
    if not db_operations.delete_shipping_rate(db, product_uid, product_weight, shipping_provider):
        raise HTTPException(status_code=404, detail="Shipping rate not found")
    return {"deleted": True}


@app.get("/default-shipping-rates")
def get_default_shipping_rates(db: Session = Depends(get_db)):
    return [
        {"shipping_provider": row.shipping_provider, "rate": row.rate, "currency": row.currency}
        for row in db_operations.get_default_shipping_rates(db)
    ]


@app.post("/default-shipping-rates", status_code=201)
def upsert_default_shipping_rate(request: DefaultShippingRateValidator, db: Session = Depends(get_db)):
    row = db_operations.upsert_default_shipping_rate(db, request.shipping_provider, request.rate, request.currency)
    return {"shipping_provider": row.shipping_provider, "rate": row.rate, "currency": row.currency}


@app.post("/settings/import")
async def import_settings_workbook(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """Bulk upsert product prices and shipping rates from an xlsx workbook."""
    if not (file.filename or "").lower().endswith((".xlsx", ".xls")):
        raise HTTPException(status_code=400, detail="Please upload an Excel file")
    content = await file.read()
    counts = import_settings(db, content)
    return {"imported": counts}


@app.post("/orders/batch", status_code=201)
def insert_orders(request: OrderBatchValidator, db: Session = Depends(get_db)):
    """Store parsed order lines for an upload batch."""
    order_ids = db_operations.insert_orders(
        db, [order.model_dump() for order in request.orders], request.upload_session_id
    )
    return {"upload_session_id": request.upload_session_id, "processed": len(order_ids), "order_ids": order_ids}


# RTS/RTO reconciliation

@app.get("/rts-rto/pending")
def get_pending_reconciliations(dropshipper_email: Optional[str] = None, db: Session = Depends(get_db)):
    """Returned orders that have not been reconciled yet."""
    return [_order_dict(order) for order in ReconciliationEngine(db).pending(dropshipper_email)]


@app.get("/rts-rto/history")
def get_reconciliation_history(
    dropshipper_email: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db)
):
    records = ReconciliationEngine(db).history(dropshipper_email, date_from, date_to)
    return [_reconciliation_dict(record) for record in records]


@app.post("/rts-rto/reconcile", status_code=201)
def reconcile(request: ReconcileValidator, db: Session = Depends(get_db)):
    """Record a confirmed reversal."""
    data = request.model_dump(exclude={"allow_duplicate"})
    record = ReconciliationEngine(db).reconcile(data, allow_duplicate=request.allow_duplicate)
    return _reconciliation_dict(record)


@app.post("/rts-rto/auto-detect")
def auto_detect(request: AutoDetectValidator, db: Session = Depends(get_db)):
    """Suggest reversals for paid orders that have since been returned."""
    suggestions = ReconciliationEngine(db).auto_detect(
        request.order_date_from, request.order_date_to, request.dropshipper_email
    )
    return [suggestion.as_dict() for suggestion in suggestions]


# Settlement scheduling

@app.get("/settlement/settings")
def get_settlement_settings(db: Session = Depends(get_db)):
    return db_operations.load_settlement_settings(db).as_dict()


@app.post("/settlement/settings")
def save_settlement_settings(request: SettlementSettingsValidator, db: Session = Depends(get_db)):
    """
    Save the settlement cycle. Anchors are kept as stored; only a settlement
    export moves them. Pass ``expected_version`` to fail with 409 if the
    settings changed since they were read.
    """
    current = db_operations.load_settlement_settings(db)
    expected_version = current.version if request.expected_version is None else request.expected_version
    settings = replace(
        SettlementSettings(
            frequency=request.frequency,
            cutoff_offset_days=request.cutoff_offset_days,
            anchored=request.anchored,
            custom_weekdays=tuple(request.custom_weekdays),
            last_payment_done_on=current.last_payment_done_on,
            last_delivered_cutoff=current.last_delivered_cutoff,
        ),
        version=expected_version,
    )
    return db_operations.save_settlement_settings(db, settings, expected_version).as_dict()


@app.post("/settlement/runs")
def generate_settlement_runs(request: SettlementRunsValidator, db: Session = Depends(get_db)):
    """Scheduled runs for a range with per-run payouts (the payout planner)."""
    plan = processors.plan_settlement_runs(
        db,
        request.frequency,
        request.cutoff_offset_days,
        request.anchored,
        request.range_from,
        request.range_to,
        dropshipper_email=request.dropshipper_email,
        custom_weekdays=request.custom_weekdays,
        charging_policy=request.charging_policy,
    )
    if request.format == "excel":
        return _xlsx_response(build_planner_workbook(plan), planner_filename(plan))
    return plan.as_dict()


@app.post("/settlement/export")
def export_settlement(request: SettlementExportValidator, db: Session = Depends(get_db)):
    """Export a settlement run and advance the anchors."""
    export = processors.export_settlement(
        db, request.run_date, request.dropshipper_email, request.charging_policy
    )
    return _xlsx_response(
        export["content"],
        export["filename"],
        headers={"X-Settlement-Export-Id": export["export_id"]},
    )


@app.get("/transparency/config-summary")
def get_configuration_summary(db: Session = Depends(get_db)):
    return processors.get_configuration_summary(db)
