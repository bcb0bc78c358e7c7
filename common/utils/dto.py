from typing import Any, Dict


def _iso(value) -> Any:
    return value.isoformat() if value is not None else None


def to_order_dto(row: Any) -> Dict:
    items = getattr(row, "items", None) or []
    return {
        "id": getattr(row, "id", None),
        "status": getattr(row, "status", None),
        "currency": getattr(row, "currency", None),
        "subtotal_amount": int(getattr(row, "subtotal_amount", 0) or 0),
        "shipping_amount": int(getattr(row, "shipping_amount", 0) or 0),
        "discount_amount": int(getattr(row, "discount_amount", 0) or 0),
        "total_amount": int(getattr(row, "total_amount", 0) or 0),
        "promotion_name": getattr(row, "promotion_name", None) or "NONE",
        "shipping": getattr(row, "shipping_json", None),
        "shipping_country": getattr(row, "shipping_country", None),
        "payment_reference": getattr(row, "payment_reference", None),
        "tracking_code": getattr(row, "tracking_code", None),
        "tracking_url": getattr(row, "tracking_url", None),
        "created_at": _iso(getattr(row, "created_at", None)),
        "paid_at": _iso(getattr(row, "paid_at", None)),
        "items": [it.to_dict() for it in items],
    }
