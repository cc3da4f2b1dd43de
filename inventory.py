"""
Stock commits.

A commit checks every line first, then decrements each product with a
conditional update (``stock >= quantity``) so stock can never go negative,
refreshes ``stock_status`` and records one order summary per line. Run it
inside ``database.transaction()`` so a failure on any line leaves nothing
behind.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.client_session import ClientSession

from database import db, create_document, to_object_id
from schemas import OrderSummary

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10


class InsufficientStockError(Exception):
    def __init__(self, items: List[Dict[str, Any]]):
        self.items = items
        names = ", ".join(i["name"] or i["product_id"] for i in items)
        super().__init__(f"Insufficient stock for: {names}")


def stock_status_for(stock: int) -> str:
    if stock <= 0:
        return "out-of-stock"
    if stock <= LOW_STOCK_THRESHOLD:
        return "low-stock"
    return "in-stock"


def effective_price(product: dict) -> float:
    sale = float(product.get("sale_price") or 0)
    return sale if sale > 0 else float(product.get("retail_price") or 0)


def profit_margin(product: dict) -> float:
    cost = float(product.get("cost_price") or 0)
    if cost <= 0:
        return 0.0
    return round((effective_price(product) - cost) / cost * 100, 2)


def _merge_lines(lines: List[Dict[str, Any]]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for line in lines:
        pid = str(line["product_id"])
        merged[pid] = merged.get(pid, 0) + int(line["quantity"])
    return merged


def check_stock(lines: List[Dict[str, Any]], session: Optional[ClientSession] = None) -> Dict[str, dict]:
    """Return products by id, or raise InsufficientStockError listing every short line."""
    products: Dict[str, dict] = {}
    short = []
    for pid, qty in _merge_lines(lines).items():
        oid = to_object_id(pid)
        product = db["product"].find_one({"_id": oid}, session=session) if oid else None
        available = int(product.get("stock", 0)) if product else 0
        if product is None or available < qty:
            short.append({
                "product_id": pid,
                "name": product.get("name") if product else None,
                "requested": qty,
                "available": available,
            })
            continue
        products[pid] = product
    if short:
        raise InsufficientStockError(short)
    return products


def reduce_stock(lines: List[Dict[str, Any]], session: Optional[ClientSession] = None) -> List[Dict[str, Any]]:
    products = check_stock(lines, session=session)
    updated = []
    for pid, qty in _merge_lines(lines).items():
        after = db["product"].find_one_and_update(
            {"_id": products[pid]["_id"], "stock": {"$gte": qty}},
            {"$inc": {"stock": -qty}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if after is None:
            # Lost a race with another commit between check and update
            raise InsufficientStockError([{
                "product_id": pid, "name": products[pid].get("name"), "requested": qty,
                "available": int(db["product"].find_one({"_id": products[pid]["_id"]}, session=session).get("stock", 0)),
            }])
        status = stock_status_for(after["stock"])
        if status != after.get("stock_status"):
            db["product"].update_one({"_id": after["_id"]}, {"$set": {"stock_status": status}}, session=session)
        updated.append({
            "product_id": pid,
            "name": after.get("name"),
            "previous_stock": after["stock"] + qty,
            "new_stock": after["stock"],
            "stock_status": status,
        })
    return updated


def build_summary(product: dict, quantity: int, status: str, gift_id: Optional[str] = None,
                  order_date: Optional[datetime] = None) -> OrderSummary:
    cost = float(product.get("cost_price") or 0)
    retail = float(product.get("retail_price") or 0)
    sale = float(product.get("sale_price") or 0)
    profit = round((sale if sale > 0 else retail) - cost, 2)
    return OrderSummary(
        gift_id=gift_id,
        product_sku=product.get("sku", ""),
        product_id=str(product["_id"]),
        product_name=product.get("name", ""),
        quantity=quantity,
        cost_price=cost,
        retail_price=retail,
        sale_price=sale,
        profit=profit,
        total_profit=round(profit * quantity, 2),
        order_date=order_date or datetime.utcnow(),
        status=status,
    )


def commit_stock(lines: List[Dict[str, Any]], summary_status: str, gift_id: Optional[str] = None,
                 session: Optional[ClientSession] = None) -> Dict[str, Any]:
    """Decrement stock for ``lines`` and record their order summaries."""
    updated = reduce_stock(lines, session=session)
    summary_ids = []
    for line in lines:
        product = db["product"].find_one({"_id": to_object_id(line["product_id"])}, session=session)
        summary = build_summary(product, int(line["quantity"]), summary_status, gift_id=gift_id)
        summary_ids.append(create_document("order_summary", summary, session=session))
    logger.info("Committed stock for %s lines (%s %s)", len(lines), summary_status, gift_id or "")
    return {"updated_items": updated, "summary_ids": summary_ids}
