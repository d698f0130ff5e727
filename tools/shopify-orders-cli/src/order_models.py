#!/usr/bin/env python3
"""
Typed records for orders going to and coming back from Shopify.

input.json (camelCase, loosely typed) is decoded into an OrderDraft once,
and remote responses are decoded into RemoteOrderConfirmation /
FulfillmentOrder records once, so the builder and the flows never poke
at raw dicts.
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from shopify_client import InputError, ResponseShapeError

ORDER_GID_PREFIX = "gid://shopify/Order/"


class Strategy(Enum):
    DIRECT_NO_FRILLS = "direct"
    DIRECT_WITH_TAX_ONLY = "rest-tax"
    DIRECT_WITH_TAX_AND_DISCOUNT = "graphql"
    DRAFT_ORDER_FLOW = "draft"
    HYBRID_EDIT = "hybrid"


class DiscountKind(Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


def parse_money(value: Any) -> Optional[Decimal]:
    """Decimal from a string/number; anything unparseable counts as absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = repr(value)
    text = str(value).strip().replace("$", "").replace(",", "")
    if not text:
        return None
    try:
        d = Decimal(text)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return d


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


@dataclass(frozen=True)
class DiscountSpec:
    kind: DiscountKind
    value: Decimal
    title: str = ""
    code: str = ""

    @property
    def is_percentage(self) -> bool:
        return self.kind is DiscountKind.PERCENTAGE


@dataclass(frozen=True)
class TaxLineSpec:
    title: str
    rate: Decimal
    amount: Decimal
    used: bool = True


@dataclass(frozen=True)
class Address:
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    province: str = ""
    country: str = ""
    zip: str = ""
    phone: str = ""

    _GRAPHQL_KEYS = (
        ("first_name", "firstName"),
        ("last_name", "lastName"),
        ("company", "company"),
        ("address1", "address1"),
        ("address2", "address2"),
        ("city", "city"),
        ("province", "province"),
        ("country", "country"),
        ("zip", "zip"),
        ("phone", "phone"),
    )

    @classmethod
    def from_input(cls, raw: Optional[Dict[str, Any]]) -> Optional["Address"]:
        if not isinstance(raw, dict):
            return None
        addr = cls(**{py: _str(raw.get(camel) or raw.get(py)) for py, camel in cls._GRAPHQL_KEYS})
        return None if addr.is_empty() else addr

    def is_empty(self) -> bool:
        return not any(getattr(self, py) for py, _ in self._GRAPHQL_KEYS)

    def to_graphql(self) -> Dict[str, str]:
        return {camel: getattr(self, py) for py, camel in self._GRAPHQL_KEYS if getattr(self, py)}

    def to_rest(self) -> Dict[str, str]:
        return {py: getattr(self, py) for py, _ in self._GRAPHQL_KEYS if getattr(self, py)}


@dataclass(frozen=True)
class LineItem:
    variant_id: str
    quantity: int
    price: Optional[Decimal] = None
    origin_price: Optional[Decimal] = None
    title: str = ""
    discounts: Tuple[DiscountSpec, ...] = ()
    tax_lines: Tuple[TaxLineSpec, ...] = ()
    taxable: bool = True
    taxes_included: bool = False
    total_tax: Optional[Decimal] = None
    total_discount: Optional[Decimal] = None

    @property
    def unit_price(self) -> Decimal:
        if self.price is not None:
            return self.price
        if self.origin_price is not None:
            return self.origin_price
        return Decimal("0")


@dataclass(frozen=True)
class PaymentSpec:
    amount: Decimal
    currency: str = "USD"
    gateway: str = "manual"
    kind: str = "sale"


@dataclass(frozen=True)
class OrderDraft:
    line_items: Tuple[LineItem, ...]
    email: str = ""
    customer_id: str = ""
    first_name: str = ""
    last_name: str = ""
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    note: str = ""
    shipping_note: str = ""
    tags: Tuple[str, ...] = ()
    custom_attributes: Tuple[Tuple[str, str], ...] = ()
    discounts: Tuple[DiscountSpec, ...] = ()
    tax_lines: Tuple[TaxLineSpec, ...] = ()
    taxes_included: bool = False
    subtotal_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    total_discounts: Optional[Decimal] = None
    shipping_title: str = ""
    shipping_price: Optional[Decimal] = None
    shipping_price_ex_tax: Optional[Decimal] = None
    shipping_tax: Optional[Decimal] = None
    payments: Tuple[PaymentSpec, ...] = ()
    financial_status: str = "PAID"
    currency: str = "USD"

    @property
    def used_tax_lines(self) -> Tuple[TaxLineSpec, ...]:
        return tuple(t for t in self.tax_lines if t.used)


def _discount_from_input(raw: Dict[str, Any]) -> Optional[DiscountSpec]:
    if not isinstance(raw, dict):
        return None
    title = _str(raw.get("title") or raw.get("description"))
    code = _str(raw.get("code"))
    value_type = _str(raw.get("valueType") or raw.get("value_type") or raw.get("type")).lower()
    if value_type == "percentage":
        pct = parse_money(raw.get("value"))
        if pct is None or pct < 0:
            return None
        pct = min(pct, Decimal("100")).quantize(Decimal("0.01"))
        return DiscountSpec(DiscountKind.PERCENTAGE, pct, title, code)
    amount = parse_money(raw.get("amount"))
    if amount is None:
        amount = parse_money(raw.get("value"))
    if amount is None or amount < 0:
        return None
    return DiscountSpec(DiscountKind.FIXED_AMOUNT, amount, title, code)


def _discounts_from_input(raw_list: Any) -> Tuple[DiscountSpec, ...]:
    out = []
    for raw in raw_list or []:
        d = _discount_from_input(raw)
        if d is not None:
            out.append(d)
    return tuple(out)


def _tax_lines_from_input(raw_list: Any) -> Tuple[TaxLineSpec, ...]:
    out = []
    for raw in raw_list or []:
        if not isinstance(raw, dict):
            continue
        amount = parse_money(raw.get("price"))
        if amount is None:
            amount = parse_money(raw.get("amount"))
        out.append(TaxLineSpec(
            title=_str(raw.get("title") or raw.get("code")) or "Tax",
            rate=parse_money(raw.get("rate")) or Decimal("0"),
            amount=amount or Decimal("0"),
            used=_bool(raw.get("isUsed"), True),
        ))
    return tuple(out)


def _line_item_from_input(raw: Dict[str, Any], index: int) -> LineItem:
    variant = _str(raw.get("productId") or raw.get("variantId"))
    if not variant:
        raise InputError(f"items[{index}] has no productId/variantId")
    raw_quantity = raw.get("quantity")
    try:
        quantity = int(raw_quantity) if raw_quantity is not None else 1
    except (TypeError, ValueError):
        raise InputError(f"items[{index}].quantity must be a whole number")
    if quantity < 1:
        raise InputError(f"items[{index}].quantity must be positive")
    return LineItem(
        variant_id=variant,
        quantity=quantity,
        price=parse_money(raw.get("price")),
        origin_price=parse_money(raw.get("originPrice")),
        title=_str(raw.get("name") or raw.get("title")),
        discounts=_discounts_from_input(raw.get("discountApplications")),
        tax_lines=_tax_lines_from_input(raw.get("taxLines")),
        taxable=_bool(raw.get("taxable"), True),
        taxes_included=_bool(raw.get("taxesIncluded"), False),
        total_tax=parse_money(raw.get("totalTax")),
        total_discount=parse_money(raw.get("totalDiscount")),
    )


def _tags(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, str):
        raw = raw.split(",")
    return tuple(t.strip() for t in (raw or []) if isinstance(t, str) and t.strip())


def draft_from_input(raw: Dict[str, Any], currency: str = "USD") -> OrderDraft:
    """Decode the {"order": {...}} document into an OrderDraft."""
    order = raw.get("order") if isinstance(raw, dict) else None
    if not isinstance(order, dict):
        raise InputError('input must contain an "order" object')
    items = order.get("items") or order.get("lineItems") or []
    if not isinstance(items, list) or not items:
        raise InputError("order.items must be a non-empty list")
    line_items = tuple(_line_item_from_input(it or {}, i) for i, it in enumerate(items))

    customer = order.get("customer") if isinstance(order.get("customer"), dict) else {}
    email = _str(customer.get("email")) or _str(order.get("email"))
    additional = order.get("additionalData") if isinstance(order.get("additionalData"), dict) else {}
    shipping_note = _str(additional.get("shipping_note")) or _str(order.get("shippingNote"))

    attrs = []
    for a in order.get("noteAttributes") or []:
        if isinstance(a, dict) and _str(a.get("name")):
            attrs.append((_str(a.get("name")), _str(a.get("value"))))

    shipping_price = None
    for key in ("totalShippingIncTax", "totalShippingExTax", "totalShipping"):
        shipping_price = parse_money(order.get(key))
        if shipping_price is not None:
            break

    order_currency = _str(order.get("currency")) or currency
    payments = []
    for p in order.get("payments") or []:
        if not isinstance(p, dict):
            continue
        amount = parse_money(p.get("amount"))
        if amount is None or amount <= 0:
            continue
        payments.append(PaymentSpec(
            amount=amount,
            currency=_str(p.get("currency")) or order_currency,
            gateway=_str(p.get("paymentName") or p.get("paymentCode")) or "manual",
        ))

    return OrderDraft(
        line_items=line_items,
        email=email,
        customer_id=_str(customer.get("id")),
        first_name=_str(customer.get("firstName")),
        last_name=_str(customer.get("lastName")),
        shipping_address=Address.from_input(order.get("shippingAddress")),
        billing_address=Address.from_input(order.get("billingAddress")),
        note=_str(order.get("note")),
        shipping_note=shipping_note,
        tags=_tags(order.get("tags")),
        custom_attributes=tuple(attrs),
        discounts=_discounts_from_input(order.get("discountApplications")),
        tax_lines=_tax_lines_from_input(order.get("taxLines")),
        taxes_included=_bool(order.get("taxesIncluded"), False),
        subtotal_price=parse_money(order.get("subtotalPrice")),
        total_price=parse_money(order.get("totalPrice")),
        total_discounts=parse_money(order.get("totalDiscounts")),
        shipping_title=_str(order.get("shippingMethod")),
        shipping_price=shipping_price,
        shipping_price_ex_tax=parse_money(order.get("totalShippingExTax")),
        shipping_tax=parse_money(order.get("totalTaxShipping")),
        payments=tuple(payments),
        financial_status=(_str(order.get("financialStatus")) or "PAID").upper(),
        currency=order_currency,
    )


def load_draft(path: str, currency: str = "USD") -> OrderDraft:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except OSError as e:
        raise InputError(f"cannot read {path}: {e}")
    except ValueError as e:
        raise InputError(f"{path} is not valid JSON: {e}")
    return draft_from_input(raw, currency)


# ---- remote side ----


def require(obj: Any, *path: str) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, dict) or cur.get(key) is None:
            raise ResponseShapeError(f"response is missing {'.'.join(path)}")
        cur = cur[key]
    return cur


def order_gid(value: Any) -> str:
    text = _str(value)
    if text.startswith("gid://"):
        return text
    return f"{ORDER_GID_PREFIX}{text}"


def money_amount(money_set: Any) -> Optional[Decimal]:
    """Amount from a GraphQL MoneyBag ({shopMoney: {amount}}) or MoneyV2 ({amount})."""
    if not isinstance(money_set, dict):
        return None
    if isinstance(money_set.get("shopMoney"), dict):
        return parse_money(money_set["shopMoney"].get("amount"))
    return parse_money(money_set.get("amount"))


@dataclass(frozen=True)
class RecordedTaxLine:
    title: str
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class ConfirmedLineItem:
    title: str
    quantity: int
    unit_price: Decimal
    remote_id: str = ""


@dataclass(frozen=True)
class FulfillmentLine:
    id: str
    title: str
    remaining_quantity: int


@dataclass(frozen=True)
class FulfillmentOrder:
    id: str
    status: str
    request_status: str = ""
    location_id: str = ""
    line_items: Tuple[FulfillmentLine, ...] = ()

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "FulfillmentOrder":
        lines = []
        for e in (node.get("lineItems") or {}).get("edges", []):
            n = (e or {}).get("node") or {}
            remaining = n.get("remainingQuantity")
            if remaining is None:
                remaining = n.get("totalQuantity") or 0
            lines.append(FulfillmentLine(
                id=_str(n.get("id")),
                title=_str((n.get("lineItem") or {}).get("title")),
                remaining_quantity=int(remaining),
            ))
        location = ((node.get("assignedLocation") or {}).get("location") or {}).get("id")
        return cls(
            id=_str(require(node, "id")),
            status=_str(node.get("status")),
            request_status=_str(node.get("requestStatus")),
            location_id=_str(location),
            line_items=tuple(lines),
        )


@dataclass(frozen=True)
class RemoteOrderConfirmation:
    order_id: str
    name: str
    total_price: Decimal
    total_tax: Decimal
    tax_lines: Tuple[RecordedTaxLine, ...] = ()
    discount_codes: Tuple[str, ...] = ()
    line_items: Tuple[ConfirmedLineItem, ...] = ()
    strategy: Optional[Strategy] = None
    fulfillment_orders: Tuple[FulfillmentOrder, ...] = ()
    warnings: Tuple[str, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def numeric_id(self) -> str:
        return self.order_id.rsplit("/", 1)[-1]


def confirmation_from_graphql(order: Dict[str, Any], strategy: Optional[Strategy] = None) -> RemoteOrderConfirmation:
    """Decode an Order node selected with ORDER_FIELDS."""
    tax_lines = tuple(
        RecordedTaxLine(
            title=_str(t.get("title")),
            rate=parse_money(t.get("rate")) or Decimal("0"),
            amount=money_amount(t.get("priceSet")) or Decimal("0"),
        )
        for t in order.get("taxLines") or []
    )
    items = []
    for e in (order.get("lineItems") or {}).get("edges", []):
        n = (e or {}).get("node") or {}
        price = money_amount(n.get("discountedUnitPriceSet"))
        if price is None:
            price = money_amount(n.get("originalUnitPriceSet")) or Decimal("0")
        items.append(ConfirmedLineItem(
            title=_str(n.get("title")),
            quantity=int(n.get("quantity") or 0),
            unit_price=price,
            remote_id=_str(n.get("id")),
        ))
    total = money_amount(order.get("totalPriceSet"))
    if total is None:
        raise ResponseShapeError("response is missing order.totalPriceSet")
    return RemoteOrderConfirmation(
        order_id=_str(require(order, "id")),
        name=_str(order.get("name")),
        total_price=total,
        total_tax=money_amount(order.get("totalTaxSet")) or Decimal("0"),
        tax_lines=tax_lines,
        discount_codes=tuple(_str(c) for c in order.get("discountCodes") or []),
        line_items=tuple(items),
        strategy=strategy,
        raw=order,
    )


def confirmation_from_rest(order: Dict[str, Any], strategy: Optional[Strategy] = None) -> RemoteOrderConfirmation:
    """Decode the `order` object of a REST orders.json response."""
    tax_lines = tuple(
        RecordedTaxLine(
            title=_str(t.get("title")),
            rate=parse_money(t.get("rate")) or Decimal("0"),
            amount=parse_money(t.get("price")) or Decimal("0"),
        )
        for t in order.get("tax_lines") or []
    )
    total_tax = parse_money(order.get("total_tax"))
    if total_tax is None:
        total_tax = sum((t.amount for t in tax_lines), Decimal("0"))
    total = parse_money(order.get("total_price"))
    if total is None:
        raise ResponseShapeError("response is missing order.total_price")
    name = _str(order.get("name"))
    if not name and order.get("order_number") is not None:
        name = f"#{order['order_number']}"
    items = tuple(
        ConfirmedLineItem(
            title=_str(li.get("title") or li.get("name")),
            quantity=int(li.get("quantity") or 0),
            unit_price=parse_money(li.get("price")) or Decimal("0"),
            remote_id=_str(li.get("id")),
        )
        for li in order.get("line_items") or []
    )
    return RemoteOrderConfirmation(
        order_id=order_gid(require(order, "id")),
        name=name,
        total_price=total,
        total_tax=total_tax,
        tax_lines=tax_lines,
        discount_codes=tuple(_str(c.get("code")) for c in order.get("discount_codes") or [] if isinstance(c, dict)),
        line_items=items,
        strategy=strategy,
        raw=order,
    )
