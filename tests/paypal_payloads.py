"""PayPal webhook events and Orders API responses as the provider sends them."""


def capture_event(order_id, *, event_type="PAYMENT.CAPTURE.COMPLETED", paypal_order_id="PAYPAL-ORDER-1",
                  capture_id="CAPTURE-1", value="40.00", **capture_fields):
    capture = {
        "id": capture_id,
        "status": capture_fields.pop("status", "COMPLETED"),
        "amount": {"currency_code": "EUR", "value": value},
        "supplementary_data": {"related_ids": {"order_id": paypal_order_id}} if paypal_order_id else {},
        "links": capture_fields.pop("links", []),
    }
    if order_id:
        capture["custom_id"] = order_id
    capture.update(capture_fields)
    return {"id": "WH-EVENT-1", "event_type": event_type, "resource_type": "capture", "resource": capture}


def capture_result(order_id, *, paypal_order_id="PAYPAL-ORDER-1", status="COMPLETED", value="40.00"):
    return {
        "id": paypal_order_id,
        "status": "COMPLETED" if status == "COMPLETED" else "APPROVED",
        "payer": {
            "name": {"given_name": "Ana", "surname": "Silva"},
            "email_address": "ana@example.com",
        },
        "purchase_units": [
            {
                "reference_id": order_id,
                "shipping": {
                    "name": {"full_name": "Ana Silva"},
                    "address": {
                        "address_line_1": "Rua Augusta 10",
                        "admin_area_2": "Lisbon",
                        "postal_code": "1100-053",
                        "country_code": "PT",
                    },
                },
                "payments": {
                    "captures": [
                        {
                            "id": "CAPTURE-1",
                            "status": status,
                            "custom_id": order_id,
                            "amount": {"currency_code": "EUR", "value": value},
                        }
                    ]
                },
            }
        ],
    }
