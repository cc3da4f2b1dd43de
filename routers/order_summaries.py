from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import db, create_document, find_by_id, serialize_doc
from inventory import build_summary
from security import STAFF_ROLES, require_roles

router = APIRouter(prefix="/api/orders-summary", tags=["order summaries"])

SUMMARY_STATUSES = ("order", "orders", "surprisegift", "collaborative")


class SummaryIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    status: str = Field("order", pattern="^(order|orders|surprisegift|collaborative)$")
    gift_id: Optional[str] = None
    order_date: Optional[datetime] = None


def summary_filter(status: Optional[str], start_date: Optional[datetime], end_date: Optional[datetime]) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    if start_date or end_date:
        filt["order_date"] = {}
        if start_date:
            filt["order_date"]["$gte"] = start_date
        if end_date:
            filt["order_date"]["$lte"] = end_date
    return filt


def _revenue(summary: dict) -> float:
    sale = summary.get("sale_price") or 0
    return (sale if sale > 0 else summary.get("retail_price", 0)) * summary.get("quantity", 0)


@router.post("", status_code=201)
async def create_summary(payload: SummaryIn, user: dict = Depends(require_roles(*STAFF_ROLES))):
    product = find_by_id("product", payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    summary = build_summary(product, payload.quantity, payload.status,
                            gift_id=payload.gift_id, order_date=payload.order_date)
    sid = create_document("order_summary", summary)
    return {"success": True, "summary": serialize_doc(find_by_id("order_summary", sid))}


@router.get("")
async def list_summaries(status: Optional[str] = None, start_date: Optional[datetime] = None,
                         end_date: Optional[datetime] = None, user: dict = Depends(require_roles(*STAFF_ROLES))):
    if status and status not in SUMMARY_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {', '.join(SUMMARY_STATUSES)}")
    cursor = db["order_summary"].find(summary_filter(status, start_date, end_date)).sort("order_date", -1)
    summaries = [serialize_doc(s) for s in cursor]
    return {"success": True, "count": len(summaries), "summaries": summaries}


@router.get("/analytics")
async def summary_analytics(status: Optional[str] = None, start_date: Optional[datetime] = None,
                            end_date: Optional[datetime] = None, user: dict = Depends(require_roles(*STAFF_ROLES))):
    totals = {"total_orders": 0, "total_quantity": 0, "total_revenue": 0.0, "total_cost": 0.0, "total_profit": 0.0}
    by_status: Dict[str, Dict[str, float]] = {}
    for s in db["order_summary"].find(summary_filter(status, start_date, end_date)):
        revenue = _revenue(s)
        cost = s.get("cost_price", 0) * s.get("quantity", 0)
        bucket = by_status.setdefault(s.get("status", "order"), {"orders": 0, "quantity": 0, "revenue": 0.0, "profit": 0.0})
        bucket["orders"] += 1
        bucket["quantity"] += s.get("quantity", 0)
        bucket["revenue"] = round(bucket["revenue"] + revenue, 2)
        bucket["profit"] = round(bucket["profit"] + s.get("total_profit", 0), 2)
        totals["total_orders"] += 1
        totals["total_quantity"] += s.get("quantity", 0)
        totals["total_revenue"] += revenue
        totals["total_cost"] += cost
        totals["total_profit"] += s.get("total_profit", 0)

    for key in ("total_revenue", "total_cost", "total_profit"):
        totals[key] = round(totals[key], 2)
    totals["avg_profit_per_order"] = round(totals["total_profit"] / totals["total_orders"], 2) if totals["total_orders"] else 0
    return {"success": True, "analytics": totals, "by_status": by_status}
