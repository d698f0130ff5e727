#!/usr/bin/env python3
"""
Order payload builder.

Pure functions: pick a creation strategy for an OrderDraft and shape the
request bodies each Shopify order-creation mechanism expects. Nothing
here talks to the network.

Shopify's order-creation surfaces each accept a different subset of
{custom tax lines, line-item discounts, order discounts}:

    draftOrderCreate      discounts yes, custom tax no
    REST POST orders.json custom tax yes, discounts as allocations only
    GraphQL orderCreate   custom tax yes, one price per line (no discount object)
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from order_models import (
    DiscountKind,
    DiscountSpec,
    LineItem,
    OrderDraft,
    Strategy,
)
from shopify_client import InputError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")
STRIKE = "\u0336"
METADATA_MARKERS = ("original price", "<s>", "</s>")
VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"


def quantize(d: Decimal) -> Decimal:
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(d: Decimal) -> str:
    q = quantize(d)
    if q == ZERO:
        q = abs(q)
    return f"{q:.2f}"


def format_percent(p: Decimal) -> str:
    """20.00 -> '20', 12.50 -> '12.5'."""
    text = format(quantize(p).normalize(), "f")
    return text


def strikethrough(text: str) -> str:
    return "".join(ch + STRIKE for ch in text)


def is_metadata_discount(d: DiscountSpec) -> bool:
    """Upstream POS data sometimes carries the struck-out original price as a 'discount'."""
    title = (d.title or "").lower()
    return any(m in title for m in METADATA_MARKERS)


def real_discounts(discounts: Sequence[DiscountSpec]) -> Tuple[DiscountSpec, ...]:
    return tuple(d for d in discounts if not is_metadata_discount(d) and d.value > ZERO)


def variant_gid(variant_id: str) -> str:
    if variant_id.startswith("gid://"):
        return variant_id
    return f"{VARIANT_GID_PREFIX}{variant_id}"


def numeric_id(gid_or_id: str) -> str:
    return str(gid_or_id).rsplit("/", 1)[-1].split("?", 1)[0]


def describe_discount(d: DiscountSpec) -> str:
    suffix = f" ({d.title})" if d.title else ""
    if d.is_percentage:
        return f"{format_percent(d.value)}% off{suffix}"
    return f"${format_money(d.value)}{suffix}"


def apply_discount(price: Decimal, d: DiscountSpec) -> Decimal:
    """Reduce price by one discount, never below zero."""
    if d.is_percentage:
        reduction = quantize(price * d.value / HUNDRED)
    else:
        reduction = d.value
    return max(quantize(price - reduction), ZERO)


@dataclass(frozen=True)
class TargetLineItem:
    variant_id: str
    quantity: int
    title: str
    original_price: Decimal
    discounted_price: Decimal
    discount_notes: Tuple[str, ...] = ()
    applied: Tuple[DiscountSpec, ...] = ()

    @property
    def has_discount(self) -> bool:
        return bool(self.applied)

    @property
    def unit_reduction(self) -> Decimal:
        return self.original_price - self.discounted_price

    @property
    def properties(self) -> Tuple[Tuple[str, str], ...]:
        if not self.applied:
            return ()
        return (
            ("Original Price", strikethrough(f"${format_money(self.original_price)}")),
            ("Line item discount", "\n".join(self.discount_notes)),
        )


@dataclass(frozen=True)
class LineItemTaxPortion:
    index: int
    title: str
    rate: Decimal
    amount: Decimal


def _item_discounts(item: LineItem) -> Tuple[DiscountSpec, ...]:
    discounts = real_discounts(item.discounts)
    if not discounts and item.total_discount is not None and item.total_discount > ZERO:
        discounts = (DiscountSpec(DiscountKind.FIXED_AMOUNT, item.total_discount, "Discount"),)
    return discounts


def build_line_item(item: LineItem) -> TargetLineItem:
    """Apply the item's discounts one after another to its unit price."""
    original = quantize(item.unit_price)
    price = original
    notes = []
    applied = []
    for d in _item_discounts(item):
        price = apply_discount(price, d)
        notes.append(describe_discount(d))
        applied.append(d)
    return TargetLineItem(
        variant_id=variant_gid(item.variant_id),
        quantity=item.quantity,
        title=item.title,
        original_price=original,
        discounted_price=price,
        discount_notes=tuple(notes),
        applied=tuple(applied),
    )


def build_order_level_discount(draft: OrderDraft) -> Optional[DiscountSpec]:
    explicit = real_discounts(draft.discounts)
    if explicit:
        return explicit[0]
    total = draft.total_discounts
    if total is None or total <= ZERO:
        return None
    if draft.subtotal_price is not None and draft.subtotal_price > ZERO:
        pct = min(quantize(total / draft.subtotal_price * HUNDRED), HUNDRED)
        return DiscountSpec(DiscountKind.PERCENTAGE, pct, "Order Discount")
    return DiscountSpec(DiscountKind.FIXED_AMOUNT, total, "Order Discount")


def has_item_discounts(draft: OrderDraft) -> bool:
    return any(_item_discounts(item) for item in draft.line_items)


def order_discount_for_payload(draft: OrderDraft) -> Optional[DiscountSpec]:
    """Order discount to transmit alongside per-item discounts.

    A bare totalDiscounts figure already covers item discounts when those
    are present, so it is only turned into an order discount on its own.
    """
    if real_discounts(draft.discounts):
        return build_order_level_discount(draft)
    if has_item_discounts(draft):
        return None
    return build_order_level_discount(draft)


def has_tax(draft: OrderDraft) -> bool:
    if any(t.amount > ZERO for t in draft.used_tax_lines):
        return True
    return any(t.used and t.amount > ZERO for item in draft.line_items for t in item.tax_lines)


def has_discount(draft: OrderDraft) -> bool:
    return has_item_discounts(draft) or build_order_level_discount(draft) is not None


def classify(draft: OrderDraft, prefer_strikethrough: bool = False) -> Strategy:
    """Pick the creation mechanism for the draft's tax/discount combination.

    DIRECT_NO_FRILLS is never chosen automatically; a draft with neither
    tax nor discount goes through the draft-order flow so Shopify creates
    fulfillment orders on completion.
    """
    tax = has_tax(draft)
    discount = has_discount(draft)
    if tax and discount:
        return Strategy.HYBRID_EDIT if prefer_strikethrough else Strategy.DIRECT_WITH_TAX_AND_DISCOUNT
    if tax:
        return Strategy.DIRECT_WITH_TAX_ONLY
    return Strategy.DRAFT_ORDER_FLOW


def extended_price(item: LineItem) -> Decimal:
    base = item.unit_price * item.quantity
    if item.taxes_included and item.total_tax is not None:
        base -= item.total_tax
    return max(base, ZERO)


def _split(amount: Decimal, bases: List[Decimal], total: Decimal) -> List[Decimal]:
    target = quantize(amount)
    shares = [quantize(amount * b / total) for b in bases]
    residue = target - sum(shares, ZERO)
    if residue:
        biggest = max(range(len(bases)), key=lambda i: bases[i])
        shares[biggest] += residue
    return shares


def distribute_tax(draft: OrderDraft) -> List[LineItemTaxPortion]:
    """Spread each used order-level tax line over the items by extended price."""
    bases = [extended_price(item) for item in draft.line_items]
    total = sum(bases, ZERO)
    if total <= ZERO:
        return []
    portions = []
    for t in draft.used_tax_lines:
        for i, share in enumerate(_split(t.amount, bases, total)):
            portions.append(LineItemTaxPortion(i, t.title, t.rate, share))
    return portions


# ---- payload shapers ----


def _money_set(amount: Decimal, currency: str) -> Dict[str, Any]:
    return {"shopMoney": {"amount": format_money(amount), "currencyCode": currency}}


def _rest_tax_line(title: str, rate: Decimal, amount: Decimal) -> Dict[str, Any]:
    return {"title": title, "rate": float(rate), "price": format_money(amount), "channel_liable": False}


def _graphql_tax_line(title: str, rate: Decimal, amount: Decimal, currency: str) -> Dict[str, Any]:
    return {"title": title, "rate": str(rate), "priceSet": _money_set(amount, currency)}


def _per_line_taxes(draft: OrderDraft) -> Optional[Dict[int, List[Tuple[str, Decimal, Decimal]]]]:
    """Line-level tax lines, or None when every tax line lives at order level.

    Shopify rejects tax lines at both levels at once, so when any item
    carries its own, the order-level lines are distributed onto items.
    """
    if not any(t.used for item in draft.line_items for t in item.tax_lines):
        return None
    per_line: Dict[int, List[Tuple[str, Decimal, Decimal]]] = {i: [] for i in range(len(draft.line_items))}
    for i, item in enumerate(draft.line_items):
        for t in item.tax_lines:
            if t.used:
                per_line[i].append((t.title, t.rate, quantize(t.amount)))
    for p in distribute_tax(draft):
        per_line[p.index].append((p.title, p.rate, p.amount))
    return per_line


def tax_lines_payload(draft: OrderDraft) -> List[Dict[str, Any]]:
    return [_rest_tax_line(t.title, t.rate, t.amount) for t in draft.used_tax_lines]


def has_line_level_tax(draft: OrderDraft) -> bool:
    return _per_line_taxes(draft) is not None


def line_item_tax_payload(draft: OrderDraft, remote_line_item_ids: Sequence[Any]) -> List[Dict[str, Any]]:
    """REST line_items[{id, tax_lines}] for re-applying tax per line, matched by position."""
    per_line = _per_line_taxes(draft)
    if per_line is None:
        per_line = {}
        for p in distribute_tax(draft):
            per_line.setdefault(p.index, []).append((p.title, p.rate, p.amount))
    out = []
    for i, remote_id in enumerate(remote_line_item_ids):
        if i >= len(draft.line_items):
            break
        out.append({"id": remote_id, "tax_lines": [_rest_tax_line(t, r, a) for t, r, a in per_line.get(i, [])]})
    return out


def _applied_discount_input(discounts: Sequence[DiscountSpec], reduction: Decimal, notes: Sequence[str]) -> Dict[str, Any]:
    if len(discounts) == 1:
        d = discounts[0]
        return {
            "valueType": d.kind.value,
            "value": float(d.value) if d.is_percentage else float(reduction),
            "title": d.title or "Discount",
            "description": describe_discount(d),
        }
    # Draft line items take one discount; collapse a sequence into its per-unit total
    return {
        "valueType": DiscountKind.FIXED_AMOUNT.value,
        "value": float(reduction),
        "title": ", ".join(d.title for d in discounts if d.title) or "Discount",
        "description": "; ".join(notes),
    }


def draft_order_input(draft: OrderDraft) -> Dict[str, Any]:
    """DraftOrderInput for draftOrderCreate."""
    line_items = []
    for item in draft.line_items:
        target = build_line_item(item)
        li: Dict[str, Any] = {
            "variantId": target.variant_id,
            "quantity": target.quantity,
            "originalUnitPrice": format_money(target.original_price),
            "taxable": item.taxable,
        }
        if target.has_discount:
            li["appliedDiscount"] = _applied_discount_input(target.applied, target.unit_reduction, target.discount_notes)
        line_items.append(li)

    inp: Dict[str, Any] = {"lineItems": line_items}
    if draft.email:
        inp["email"] = draft.email
    if draft.customer_id:
        inp["purchasingEntity"] = {"customerId": draft.customer_id}
    if draft.note:
        inp["note"] = draft.note
    if draft.tags:
        inp["tags"] = list(draft.tags)
    if draft.shipping_address:
        inp["shippingAddress"] = draft.shipping_address.to_graphql()
    if draft.billing_address:
        inp["billingAddress"] = draft.billing_address.to_graphql()
    if draft.custom_attributes:
        inp["customAttributes"] = [{"key": k, "value": v} for k, v in draft.custom_attributes]
    if draft.shipping_price is not None:
        inp["shippingLine"] = {
            "title": draft.shipping_title or "Shipping",
            "priceWithCurrency": {"amount": format_money(draft.shipping_price), "currencyCode": draft.currency},
        }
    order_discount = order_discount_for_payload(draft)
    if order_discount:
        inp["appliedDiscount"] = {
            "valueType": order_discount.kind.value,
            "value": float(order_discount.value),
            "title": order_discount.title or "Order Discount",
            "description": describe_discount(order_discount),
        }
    return inp


def _rest_variant_id(variant_id: str) -> int:
    num = numeric_id(variant_id)
    if not num.isdigit():
        raise InputError(f"variant id must be numeric or gid://shopify/ProductVariant/<id>; got {variant_id!r}")
    return int(num)


def rest_order_payload(
    draft: OrderDraft,
    line_discounts: bool = True,
    pickup: bool = False,
    pickup_location_id: str = "",
) -> Dict[str, Any]:
    """Body for REST POST /orders.json.

    With line_discounts=False items go in at their undiscounted price so an
    order edit can add the discounts afterwards; the order-level discount
    code is sent either way.
    """
    per_line = _per_line_taxes(draft)
    line_items = []
    for i, item in enumerate(draft.line_items):
        target = build_line_item(item)
        li: Dict[str, Any] = {
            "variant_id": _rest_variant_id(item.variant_id),
            "quantity": target.quantity,
            "price": format_money(target.original_price),
            "taxable": item.taxable,
        }
        if target.title:
            li["title"] = target.title
        if line_discounts and target.has_discount:
            li["discount_allocations"] = [{
                "amount": format_money(target.unit_reduction * target.quantity),
                "title": "; ".join(target.discount_notes),
            }]
        if per_line is not None:
            li["tax_lines"] = [_rest_tax_line(t, r, a) for t, r, a in per_line[i]]
        line_items.append(li)

    order: Dict[str, Any] = {
        "line_items": line_items,
        "financial_status": draft.financial_status.lower(),
        "currency": draft.currency,
        "taxes_included": draft.taxes_included,
        "send_receipt": False,
    }
    if per_line is None and draft.used_tax_lines:
        order["tax_lines"] = tax_lines_payload(draft)
    if draft.email:
        order["email"] = draft.email
    if draft.customer_id:
        order["customer"] = {"id": int(numeric_id(draft.customer_id))}
    elif draft.first_name or draft.last_name:
        order["customer"] = {k: v for k, v in (
            ("first_name", draft.first_name),
            ("last_name", draft.last_name),
            ("email", draft.email),
        ) if v}
    if draft.note:
        order["note"] = draft.note
    if draft.tags:
        order["tags"] = ",".join(draft.tags)
    if draft.shipping_address:
        order["shipping_address"] = draft.shipping_address.to_rest()
    if draft.billing_address:
        order["billing_address"] = draft.billing_address.to_rest()
    if draft.custom_attributes:
        order["note_attributes"] = [{"name": k, "value": v} for k, v in draft.custom_attributes]

    if pickup:
        title = draft.shipping_title or "Pickup"
        line = {
            "title": title,
            "price": format_money(draft.shipping_price or ZERO),
            "code": title.replace(" ", "").upper(),
            "source": "custom",
            "delivery_category": "pickup",
            "requires_shipping": False,
            "carrier_identifier": "pickup",
        }
        order["shipping_lines"] = [line]
        if pickup_location_id:
            order["location_id"] = int(numeric_id(pickup_location_id))
    elif draft.shipping_price is not None:
        title = draft.shipping_title or "Shipping"
        order["shipping_lines"] = [{
            "title": title,
            "price": format_money(draft.shipping_price),
            "code": title.replace(" ", "").upper(),
            "source": "custom",
        }]

    d = order_discount_for_payload(draft)
    if d:
        order["discount_codes"] = [{
            "code": d.code or d.title or "Order Discount",
            "amount": format_money(d.value),
            "type": "percentage" if d.is_percentage else "fixed_amount",
        }]
    return {"order": order}


def graphql_order_input(draft: OrderDraft, with_tax: bool = True, with_discount: bool = True) -> Dict[str, Any]:
    """OrderCreateOrderInput for the orderCreate mutation.

    orderCreate takes one price per line, so discounts are folded into
    the price and the breakdown travels as line item properties.
    """
    currency = draft.currency
    per_line = _per_line_taxes(draft) if with_tax else None
    line_items = []
    for i, item in enumerate(draft.line_items):
        target = build_line_item(item)
        price = target.discounted_price if with_discount else target.original_price
        li: Dict[str, Any] = {
            "variantId": target.variant_id,
            "quantity": target.quantity,
            "priceSet": _money_set(price, currency),
            "taxable": item.taxable,
        }
        if with_discount and target.has_discount:
            li["properties"] = [{"name": k, "value": v} for k, v in target.properties]
        if per_line is not None and per_line[i]:
            li["taxLines"] = [_graphql_tax_line(t, r, a, currency) for t, r, a in per_line[i]]
        line_items.append(li)

    order: Dict[str, Any] = {
        "lineItems": line_items,
        "financialStatus": draft.financial_status.upper(),
        "currency": currency,
    }
    if with_tax and per_line is None and draft.used_tax_lines:
        order["taxLines"] = [_graphql_tax_line(t.title, t.rate, t.amount, currency) for t in draft.used_tax_lines]
        order["taxesIncluded"] = draft.taxes_included
    if draft.email:
        order["email"] = draft.email
    if draft.customer_id:
        order["customer"] = {"toAssociate": {"id": draft.customer_id}}
    if draft.note:
        order["note"] = draft.note
    if draft.tags:
        order["tags"] = list(draft.tags)
    if draft.shipping_address:
        order["shippingAddress"] = draft.shipping_address.to_graphql()
    if draft.billing_address:
        order["billingAddress"] = draft.billing_address.to_graphql()
    if draft.custom_attributes:
        order["customAttributes"] = [{"key": k, "value": v} for k, v in draft.custom_attributes]
    if draft.shipping_price is not None:
        order["shippingLines"] = [{
            "title": draft.shipping_title or "Shipping",
            "priceSet": _money_set(draft.shipping_price, currency),
        }]
    if with_discount:
        d = order_discount_for_payload(draft)
        if d:
            code = d.code or d.title or "Order Discount"
            if d.is_percentage:
                order["discountCode"] = {"itemPercentageDiscountCode": {"code": code, "percentage": float(d.value)}}
            else:
                order["discountCode"] = {"itemFixedDiscountCode": {"code": code, "amountSet": _money_set(d.value, currency)}}
    return order


def edit_discount_input(target: TargetLineItem, currency: str) -> Dict[str, Any]:
    """OrderEditAppliedDiscountInput for one calculated line item."""
    description = "; ".join(target.discount_notes)
    if len(target.applied) == 1 and target.applied[0].is_percentage:
        return {"percentValue": float(target.applied[0].value), "description": description}
    return {
        "fixedValue": {"amount": format_money(target.unit_reduction), "currencyCode": currency},
        "description": description,
    }


def shipping_tax_note(draft: OrderDraft) -> str:
    """Note suffix describing shipping tax, or '' when there is none."""
    tax = draft.shipping_tax
    if tax is None or tax <= ZERO:
        return ""
    base = draft.shipping_price_ex_tax
    rate = tax / base if base is not None and base > ZERO else ZERO
    return (
        "\n\n--- Shipping Tax ---\n"
        f"Shipping Tax: {format_money(tax)} (Rate: {format_money(rate * HUNDRED)}%)"
    )
