"""Shipping snapshot that accumulates from several provider payloads.

A checkout can leave its address in up to three places: the metadata we put
on the hosted session, the session's ``customer_details`` block and the
payment intent's ``shipping`` block. Each is parsed on its own and then
combined with ``ShippingInfo.merge``, where the left-hand value wins field by
field unless it is empty.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional


METADATA_VALUE_LIMIT = 500


def nz(value: Any) -> Optional[str]:
    """Trimmed string, or None when blank."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def get_field(obj: Any, key: str) -> Any:
    # provider objects behave like dicts; plain payloads are dicts
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, None)


def _prefer(primary: Optional[str], fallback: Optional[str]) -> Optional[str]:
    return primary if nz(primary) is not None else nz(fallback)


@dataclass(frozen=True)
class Address:
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def __post_init__(self):
        # ISO codes are stored upper-case however the address was built
        country = nz(self.country)
        object.__setattr__(self, "country", country.upper() if country else None)

    def is_empty(self) -> bool:
        return all(nz(getattr(self, f.name)) is None for f in fields(self))

    def merge(self, other: Optional["Address"]) -> "Address":
        if other is None:
            return self
        return Address(**{f.name: _prefer(getattr(self, f.name), getattr(other, f.name)) for f in fields(self)})

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {f.name: nz(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_obj(cls, obj: Any) -> Optional["Address"]:
        if obj is None:
            return None
        addr = cls(
            line1=nz(get_field(obj, "line1")),
            line2=nz(get_field(obj, "line2")),
            city=nz(get_field(obj, "city")),
            state=nz(get_field(obj, "state")),
            postal_code=nz(get_field(obj, "postal_code")),
            country=nz(get_field(obj, "country")),
        )
        return None if addr.is_empty() else addr


@dataclass(frozen=True)
class ShippingInfo:
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[Address] = None

    @property
    def country(self) -> Optional[str]:
        return self.address.country if self.address else None

    def is_empty(self) -> bool:
        return (
            nz(self.name) is None
            and nz(self.phone) is None
            and nz(self.email) is None
            and (self.address is None or self.address.is_empty())
        )

    def merge(self, other: Optional["ShippingInfo"]) -> "ShippingInfo":
        """Fill this snapshot's empty fields from ``other``; never blank a set field."""
        if other is None:
            return self
        if self.address is None:
            address = other.address
        else:
            address = self.address.merge(other.address)
        return ShippingInfo(
            name=_prefer(self.name, other.name),
            phone=_prefer(self.phone, other.phone),
            email=_prefer(self.email, other.email),
            address=address,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": nz(self.name),
            "phone": nz(self.phone),
            "email": nz(self.email),
            "address": self.address.to_dict() if self.address else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ShippingInfo"]:
        if not data:
            return None
        info = cls(
            name=nz(data.get("name")),
            phone=nz(data.get("phone")),
            email=nz(data.get("email")),
            address=Address.from_obj(data.get("address")),
        )
        return None if info.is_empty() else info

    def to_metadata(self) -> Dict[str, str]:
        """Flatten into provider metadata (string values, clipped)."""
        def clip(v: Optional[str]) -> str:
            return (v or "")[:METADATA_VALUE_LIMIT]

        addr = self.address or Address()
        return {
            "ship_name": clip(self.name),
            "ship_phone": clip(self.phone),
            "ship_email": clip(self.email),
            "ship_line1": clip(addr.line1),
            "ship_line2": clip(addr.line2),
            "ship_city": clip(addr.city),
            "ship_state": clip(addr.state),
            "ship_postal": clip(addr.postal_code),
            "ship_country": clip(addr.country),
        }


def merge_shipping(base: Optional[ShippingInfo], add: Optional[ShippingInfo]) -> Optional[ShippingInfo]:
    if base is None:
        return add
    merged = base.merge(add)
    return None if merged.is_empty() else merged


def _non_empty(info: ShippingInfo) -> Optional[ShippingInfo]:
    return None if info.is_empty() else info


def shipping_from_metadata(meta: Any) -> Optional[ShippingInfo]:
    if not meta:
        return None
    address = Address.from_obj(
        {
            "line1": get_field(meta, "ship_line1"),
            "line2": get_field(meta, "ship_line2"),
            "city": get_field(meta, "ship_city"),
            "state": get_field(meta, "ship_state"),
            "postal_code": get_field(meta, "ship_postal"),
            "country": get_field(meta, "ship_country"),
        }
    )
    return _non_empty(
        ShippingInfo(
            name=nz(get_field(meta, "ship_name")),
            phone=nz(get_field(meta, "ship_phone")),
            email=nz(get_field(meta, "ship_email")),
            address=address,
        )
    )


def shipping_from_session(session: Any) -> Optional[ShippingInfo]:
    details = get_field(session, "customer_details")
    if not details:
        return None
    return _non_empty(
        ShippingInfo(
            name=nz(get_field(details, "name")),
            phone=nz(get_field(details, "phone")),
            email=nz(get_field(details, "email")) or nz(get_field(session, "customer_email")),
            address=Address.from_obj(get_field(details, "address")),
        )
    )


def shipping_from_payment_intent(intent: Any) -> Optional[ShippingInfo]:
    block = get_field(intent, "shipping")
    return _non_empty(
        ShippingInfo(
            name=nz(get_field(block, "name")),
            phone=nz(get_field(block, "phone")),
            email=nz(get_field(intent, "receipt_email")),
            address=Address.from_obj(get_field(block, "address")),
        )
    )


def shipping_from_paypal_order(order: Any) -> Optional[ShippingInfo]:
    """Shipping block of a PayPal order, falling back to the payer's details."""
    units = get_field(order, "purchase_units") or []
    block = get_field(units[0], "shipping") if units else None
    payer = get_field(order, "payer")
    payer_name = get_field(payer, "name")
    full_name = nz(get_field(get_field(block, "name"), "full_name")) or nz(
        " ".join(
            part
            for part in (nz(get_field(payer_name, "given_name")), nz(get_field(payer_name, "surname")))
            if part
        )
    )
    addr = get_field(block, "address")
    address = None
    if addr:
        address = Address.from_obj(
            {
                "line1": get_field(addr, "address_line_1"),
                "line2": get_field(addr, "address_line_2"),
                "city": get_field(addr, "admin_area_2"),
                "state": get_field(addr, "admin_area_1"),
                "postal_code": get_field(addr, "postal_code"),
                "country": get_field(addr, "country_code"),
            }
        )
    phone = get_field(get_field(get_field(payer, "phone"), "phone_number"), "national_number")
    return _non_empty(
        ShippingInfo(
            name=full_name,
            phone=nz(phone),
            email=nz(get_field(payer, "email_address")),
            address=address,
        )
    )


def parse_shipping_payload(data: Any) -> Optional[ShippingInfo]:
    """Validate the checkout form's shipping JSON."""
    if data is None:
        return None
    if not isinstance(data, Mapping):
        raise ValueError("shipping must be an object")
    address = data.get("address")
    if address is not None and not isinstance(address, Mapping):
        raise ValueError("shipping.address must be an object")
    return ShippingInfo.from_dict(data)
