#!/usr/bin/env python3
"""
Remote order orchestrator.

No single Shopify call accepts custom tax lines, line-item discounts and
order discounts together, so each Strategy maps to a short sequence of
calls. Steps that only decorate an order that already exists (shipping
note, tax restore after an edit, payment records) are best-effort: they
log a warning and the flow carries on.
"""

import logging
import time
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from order_builder import (
    build_line_item,
    classify,
    distribute_tax,
    draft_order_input,
    edit_discount_input,
    format_money,
    graphql_order_input,
    has_line_level_tax,
    line_item_tax_payload,
    numeric_id,
    rest_order_payload,
    shipping_tax_note,
    tax_lines_payload,
)
from order_models import (
    FulfillmentOrder,
    OrderDraft,
    PaymentSpec,
    RemoteOrderConfirmation,
    Strategy,
    confirmation_from_graphql,
    confirmation_from_rest,
    require,
)
from retry_policy import RetryPolicy, retry_until
from shopify_client import ResponseShapeError, ShopifyError, edges

ORDER_FIELDS = """
    id
    name
    totalPriceSet { shopMoney { amount currencyCode } }
    totalTaxSet { shopMoney { amount currencyCode } }
    taxLines { title rate priceSet { shopMoney { amount currencyCode } } }
    discountCodes
    lineItems(first: 50) {
      edges {
        node {
          id
          title
          quantity
          originalUnitPriceSet { shopMoney { amount } }
          discountedUnitPriceSet { shopMoney { amount } }
        }
      }
    }
"""

DRAFT_ORDER_CREATE = """
mutation draftOrderCreate($input: DraftOrderInput!) {
  draftOrderCreate(input: $input) {
    draftOrder { id name }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_CALCULATE = """
mutation draftOrderCalculate($input: DraftOrderInput!) {
  draftOrderCalculate(input: $input) {
    calculatedDraftOrder {
      subtotalPriceSet { shopMoney { amount } }
      totalTaxSet { shopMoney { amount } }
      totalPriceSet { shopMoney { amount } }
    }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_COMPLETE = """
mutation draftOrderComplete($id: ID!, $paymentPending: Boolean) {
  draftOrderComplete(id: $id, paymentPending: $paymentPending) {
    draftOrder { id status }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_LINK = """
query draftOrderLink($id: ID!) {
  node(id: $id) {
    ... on DraftOrder {
      id
      status
      order {%s}
    }
  }
}
""" % ORDER_FIELDS

ORDER_CREATE = """
mutation orderCreate($order: OrderCreateOrderInput!, $options: OrderCreateOptionsInput) {
  orderCreate(order: $order, options: $options) {
    order {%s}
    userErrors { field message }
  }
}
""" % ORDER_FIELDS

ORDER_LOOKUP = """
query orderLookup($id: ID!) {
  order(id: $id) {%s}
}
""" % ORDER_FIELDS

ORDER_NOTE_UPDATE = """
mutation orderUpdate($input: OrderInput!) {
  orderUpdate(input: $input) {
    order { id note }
    userErrors { field message }
  }
}
"""

FULFILLMENT_ORDERS = """
query fulfillmentOrders($id: ID!) {
  order(id: $id) {
    id
    fulfillmentOrders(first: 10) {
      edges {
        node {
          id
          status
          requestStatus
          assignedLocation { location { id } }
          lineItems(first: 50) {
            edges { node { id remainingQuantity totalQuantity lineItem { id title } } }
          }
        }
      }
    }
  }
}
"""

METAFIELDS_SET = """
mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id namespace key }
    userErrors { field message }
  }
}
"""

ORDER_METAFIELD = """
query orderMetafield($id: ID!, $namespace: String!, $key: String!) {
  order(id: $id) {
    metafield(namespace: $namespace, key: $key) { id value }
  }
}
"""

ORDER_EDIT_BEGIN = """
mutation orderEditBegin($id: ID!) {
  orderEditBegin(id: $id) {
    calculatedOrder {
      id
      lineItems(first: 50) { edges { node { id quantity variant { id } } } }
    }
    userErrors { field message }
  }
}
"""

ORDER_EDIT_ADD_DISCOUNT = """
mutation orderEditAddLineItemDiscount($id: ID!, $lineItemId: ID!, $discount: OrderEditAppliedDiscountInput!) {
  orderEditAddLineItemDiscount(id: $id, lineItemId: $lineItemId, discount: $discount) {
    addedDiscountStagedChange { id }
    userErrors { field message }
  }
}
"""

ORDER_EDIT_COMMIT = """
mutation orderEditCommit($id: ID!, $notifyCustomer: Boolean, $staffNote: String) {
  orderEditCommit(id: $id, notifyCustomer: $notifyCustomer, staffNote: $staffNote) {
    order { id name }
    userErrors { field message }
  }
}
"""

CREATE_OPTIONS = {
    "sendReceipt": False,
    "sendFulfillmentReceipt": False,
    "inventoryBehaviour": "DECREMENT_OBEYING_POLICY",
}


def plan_order(draft: OrderDraft, strategy: Strategy, pickup: bool = False, pickup_location_id: str = "") -> Dict[str, Any]:
    """Everything create_order would send, without sending it (for --dry-run)."""
    targets = [build_line_item(item) for item in draft.line_items]
    if strategy is Strategy.DRAFT_ORDER_FLOW:
        calls = {"draftOrderCreate": {"input": draft_order_input(draft)}}
    elif strategy is Strategy.DIRECT_WITH_TAX_ONLY:
        calls = {"POST orders.json": rest_order_payload(draft, pickup=pickup, pickup_location_id=pickup_location_id)}
    elif strategy is Strategy.DIRECT_WITH_TAX_AND_DISCOUNT:
        calls = {"orderCreate": {"order": graphql_order_input(draft), "options": CREATE_OPTIONS}}
    elif strategy is Strategy.DIRECT_NO_FRILLS:
        calls = {"orderCreate": {"order": graphql_order_input(draft, with_tax=False, with_discount=False), "options": CREATE_OPTIONS}}
    else:
        calls = {
            "POST orders.json": rest_order_payload(draft, line_discounts=False, pickup=pickup, pickup_location_id=pickup_location_id),
            "orderEditAddLineItemDiscount": [
                {"lineIndex": i, "discount": edit_discount_input(t, draft.currency)}
                for i, t in enumerate(targets) if t.has_discount
            ],
            "PUT orders/{id}.json": {"tax_lines": tax_lines_payload(draft)},
        }
    return {
        "strategy": strategy.value,
        "lineItems": [
            {
                "variantId": t.variant_id,
                "quantity": t.quantity,
                "originalPrice": format_money(t.original_price),
                "discountedPrice": format_money(t.discounted_price),
                "discounts": list(t.discount_notes),
            }
            for t in targets
        ],
        "taxDistribution": [
            {"lineIndex": p.index, "title": p.title, "rate": str(p.rate), "amount": format_money(p.amount)}
            for p in distribute_tax(draft)
        ],
        "requests": calls,
    }


class OrderOrchestrator:
    """Runs a Strategy's call sequence and returns one confirmation."""

    def __init__(self, client, config, retry_policy: Optional[RetryPolicy] = None, sleep=time.sleep):
        self.client = client
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep
        self.warnings: List[str] = []

    def _warn(self, msg: str, *args) -> None:
        text = msg % args if args else msg
        logging.warning(text)
        self.warnings.append(text)

    def create_order(
        self,
        draft: OrderDraft,
        strategy: Optional[Strategy] = None,
        payment_pending: bool = False,
        prefer_strikethrough: bool = False,
        pickup: bool = False,
    ) -> RemoteOrderConfirmation:
        strategy = strategy or classify(draft, prefer_strikethrough)
        self.warnings = []
        logging.info("Creating order via %s flow (%d line items)", strategy.value, len(draft.line_items))

        if strategy is Strategy.DRAFT_ORDER_FLOW:
            conf = self.run_draft_flow(draft, payment_pending=payment_pending)
        elif strategy is Strategy.DIRECT_WITH_TAX_ONLY:
            conf = self.run_rest_flow(draft, pickup=pickup)
        elif strategy is Strategy.DIRECT_WITH_TAX_AND_DISCOUNT:
            conf = self.run_graphql_flow(draft)
        elif strategy is Strategy.DIRECT_NO_FRILLS:
            conf = self.run_graphql_flow(draft, with_tax=False, with_discount=False)
        else:
            conf = self.run_hybrid_flow(draft, pickup=pickup)

        if strategy is not Strategy.DRAFT_ORDER_FLOW:
            self.attach_shipping_note(conf.order_id, draft.shipping_note)
        self.append_shipping_tax_note(conf.order_id, draft)
        return replace(conf, strategy=strategy, warnings=tuple(self.warnings))

    # ---- flows ----

    def run_draft_flow(self, draft: OrderDraft, payment_pending: bool = False) -> RemoteOrderConfirmation:
        draft_input = draft_order_input(draft)
        created = self.client.mutate(DRAFT_ORDER_CREATE, {"input": draft_input}, "draftOrderCreate")
        draft_id = require(created, "draftOrder", "id")
        logging.info("Draft order created: %s", draft_id)

        self.preview_draft(draft_input)
        self.complete_draft(draft_id, payment_pending)
        conf = confirmation_from_graphql(self.resolve_draft_order(draft_id))
        logging.info("Order created: %s (%s)", conf.name, conf.order_id)

        self.attach_shipping_note(conf.order_id, draft.shipping_note)
        if payment_pending and draft.payments:
            self.record_payments(conf.order_id, draft.payments)
        fulfillment_orders = self.fetch_fulfillment_orders(conf.order_id)
        return replace(conf, fulfillment_orders=tuple(fulfillment_orders))

    def run_rest_flow(self, draft: OrderDraft, pickup: bool = False, line_discounts: bool = True) -> RemoteOrderConfirmation:
        body = rest_order_payload(
            draft,
            line_discounts=line_discounts,
            pickup=pickup,
            pickup_location_id=self.config.pickup_location_id,
        )
        resp = self.client.rest("POST", "orders.json", body)
        order = resp.get("order")
        if not isinstance(order, dict):
            raise ResponseShapeError("orders.json response has no order object")
        conf = confirmation_from_rest(order)
        logging.info("Order created: %s (%s)", conf.name, conf.order_id)
        return conf

    def run_graphql_flow(self, draft: OrderDraft, with_tax: bool = True, with_discount: bool = True) -> RemoteOrderConfirmation:
        order_input = graphql_order_input(draft, with_tax=with_tax, with_discount=with_discount)
        payload = self.client.mutate(ORDER_CREATE, {"order": order_input, "options": CREATE_OPTIONS}, "orderCreate")
        order = payload.get("order")
        if not isinstance(order, dict):
            raise ResponseShapeError("orderCreate returned no order")
        conf = confirmation_from_graphql(order)
        logging.info("Order created: %s (%s)", conf.name, conf.order_id)
        return conf

    def run_hybrid_flow(self, draft: OrderDraft, pickup: bool = False) -> RemoteOrderConfirmation:
        """Create undiscounted with tax, add item discounts in an order edit, then put the tax back.

        Committing an edit makes Shopify recompute tax and drop custom tax
        lines, which is why the last step exists.
        """
        created = self.run_rest_flow(draft, pickup=pickup, line_discounts=False)
        targets = [build_line_item(item) for item in draft.line_items]
        if not any(t.has_discount for t in targets):
            return created

        begun = self.client.mutate(ORDER_EDIT_BEGIN, {"id": created.order_id}, "orderEditBegin")
        calc_id = require(begun, "calculatedOrder", "id")
        calc_lines = edges(begun["calculatedOrder"].get("lineItems"))
        line_ids = match_calculated_lines(targets, calc_lines)
        for target, line_id in zip(targets, line_ids):
            if not target.has_discount:
                continue
            self.client.mutate(
                ORDER_EDIT_ADD_DISCOUNT,
                {"id": calc_id, "lineItemId": line_id, "discount": edit_discount_input(target, draft.currency)},
                "orderEditAddLineItemDiscount",
            )
        self.client.mutate(
            ORDER_EDIT_COMMIT,
            {"id": calc_id, "notifyCustomer": False, "staffNote": "Line item discounts applied"},
            "orderEditCommit",
        )
        logging.info("Order edit committed for %s", created.order_id)

        self.restore_tax_lines(created.order_id, draft)
        return self.fetch_order(created.order_id)

    # ---- individual steps ----

    def preview_draft(self, draft_input: Dict[str, Any]) -> None:
        try:
            calc = self.client.mutate(DRAFT_ORDER_CALCULATE, {"input": draft_input}, "draftOrderCalculate")
        except ShopifyError as e:
            self._warn("Draft order preview failed: %s", e)
            return
        totals = calc.get("calculatedDraftOrder") or {}
        logging.info(
            "Draft preview: subtotal=%s tax=%s total=%s",
            ((totals.get("subtotalPriceSet") or {}).get("shopMoney") or {}).get("amount"),
            ((totals.get("totalTaxSet") or {}).get("shopMoney") or {}).get("amount"),
            ((totals.get("totalPriceSet") or {}).get("shopMoney") or {}).get("amount"),
        )

    def complete_draft(self, draft_id: str, payment_pending: bool = False) -> None:
        self.client.mutate(
            DRAFT_ORDER_COMPLETE,
            {"id": draft_id, "paymentPending": payment_pending},
            "draftOrderComplete",
        )
        logging.info("Draft order completed (payment pending: %s)", payment_pending)

    def resolve_draft_order(self, draft_id: str) -> Dict[str, Any]:
        data = self.client.graphql(DRAFT_ORDER_LINK, {"id": draft_id})
        order = (data.get("node") or {}).get("order")
        if not isinstance(order, dict):
            raise ResponseShapeError(f"draft order {draft_id} has no linked order after completion")
        return order

    def fetch_order(self, order_id: str) -> RemoteOrderConfirmation:
        data = self.client.graphql(ORDER_LOOKUP, {"id": order_id})
        order = data.get("order")
        if not isinstance(order, dict):
            raise ResponseShapeError(f"order {order_id} not found")
        return confirmation_from_graphql(order)

    def fetch_fulfillment_orders(self, order_id: str, policy: Optional[RetryPolicy] = None) -> List[FulfillmentOrder]:
        def lookup() -> List[FulfillmentOrder]:
            data = self.client.graphql(FULFILLMENT_ORDERS, {"id": order_id})
            order = data.get("order")
            if not isinstance(order, dict):
                raise ResponseShapeError(f"order {order_id} not found")
            return [FulfillmentOrder.from_node(n) for n in edges(order.get("fulfillmentOrders"))]

        found, ok = retry_until(
            lookup,
            bool,
            policy or self.retry_policy,
            sleep=self.sleep,
            label="Fulfillment order lookup",
        )
        if not ok:
            self._warn("No fulfillment orders yet for %s; Shopify may still be routing it", order_id)
        return found

    def set_shipping_note(self, order_id: str, note: str) -> str:
        payload = self.client.mutate(METAFIELDS_SET, {"metafields": [{
            "ownerId": order_id,
            "namespace": self.config.note_namespace,
            "key": self.config.note_key,
            "type": "multi_line_text_field",
            "value": note,
        }]}, "metafieldsSet")
        metafields = payload.get("metafields") or []
        return (metafields[0] or {}).get("id", "") if metafields else ""

    def attach_shipping_note(self, order_id: str, note: str) -> None:
        if not note or not note.strip():
            return
        try:
            self.set_shipping_note(order_id, note)
            logging.info("Shipping note saved on %s", order_id)
        except ShopifyError as e:
            self._warn("Could not save shipping note on %s: %s", order_id, e)

    def clear_shipping_note(self, order_id: str) -> bool:
        """Delete the shipping-note metafield; False when there was none."""
        data = self.client.graphql(ORDER_METAFIELD, {
            "id": order_id,
            "namespace": self.config.note_namespace,
            "key": self.config.note_key,
        })
        metafield = (data.get("order") or {}).get("metafield")
        if not metafield:
            return False
        self.client.rest("DELETE", f"metafields/{numeric_id(metafield['id'])}.json", ok_status=(200, 204))
        return True

    def append_shipping_tax_note(self, order_id: str, draft: OrderDraft) -> None:
        suffix = shipping_tax_note(draft)
        if not suffix:
            return
        try:
            self.client.mutate(
                ORDER_NOTE_UPDATE,
                {"input": {"id": order_id, "note": (draft.note or "") + suffix}},
                "orderUpdate",
            )
        except ShopifyError as e:
            self._warn("Could not add shipping tax note on %s: %s", order_id, e)

    def restore_tax_lines(self, order_id: str, draft: OrderDraft) -> bool:
        """Re-apply the draft's tax lines at order level, falling back to per-line tax.

        Items that carry their own tax lines always go straight to per-line.
        """
        line_level = has_line_level_tax(draft)
        tax_lines = tax_lines_payload(draft)
        if not line_level and not tax_lines:
            return True
        num = numeric_id(order_id)
        path = f"orders/{num}.json"
        try:
            if not line_level:
                resp = self.client.rest("PUT", path, {"order": {"id": int(num), "tax_lines": tax_lines}})
                if (resp.get("order") or {}).get("tax_lines"):
                    logging.info("Tax lines restored on %s", order_id)
                    return True
                logging.info("Order-level tax lines not kept on %s; applying per line item", order_id)
            current = self.client.rest("GET", path)
            ids = [li.get("id") for li in (current.get("order") or {}).get("line_items") or []]
            if not ids:
                raise ResponseShapeError(f"order {order_id} has no line items to carry tax")
            self.client.rest("PUT", path, {"order": {"id": int(num), "line_items": line_item_tax_payload(draft, ids)}})
            logging.info("Tax lines restored per line item on %s", order_id)
            return True
        except ShopifyError as e:
            self._warn("Could not restore tax lines on %s: %s", order_id, e)
            return False

    def record_payment(self, order_id: str, amount: Decimal, currency: str, gateway: str = "manual", kind: str = "sale") -> Dict[str, Any]:
        body = {"transaction": {
            "kind": kind,
            "gateway": gateway,
            "status": "success",
            "source": "external",
            "amount": format_money(amount),
            "currency": currency,
        }}
        resp = self.client.rest("POST", f"orders/{numeric_id(order_id)}/transactions.json", body)
        return resp.get("transaction") or {}

    def record_payments(self, order_id: str, payments: Sequence[PaymentSpec]) -> None:
        for p in payments:
            try:
                self.record_payment(order_id, p.amount, p.currency, p.gateway, p.kind)
                logging.info("Recorded %s payment of %s %s", p.gateway, format_money(p.amount), p.currency)
            except ShopifyError as e:
                self._warn("Could not record %s payment of %s: %s", p.gateway, format_money(p.amount), e)

    def list_transactions(self, order_id: str) -> List[Dict[str, Any]]:
        resp = self.client.rest("GET", f"orders/{numeric_id(order_id)}/transactions.json")
        return resp.get("transactions") or []

    def mark_paid(self, order_id: str) -> Dict[str, Any]:
        num = numeric_id(order_id)
        resp = self.client.rest("PUT", f"orders/{num}.json", {"order": {"id": int(num), "financial_status": "paid"}})
        return resp.get("order") or {}


def match_calculated_lines(targets, calc_lines: List[Dict[str, Any]]) -> List[str]:
    """Pair each draft line with a calculated line item id, by variant then by position."""
    if len(calc_lines) < len(targets):
        raise ResponseShapeError(
            f"order edit returned {len(calc_lines)} line items, expected {len(targets)}"
        )
    used = set()
    ids: List[Optional[str]] = []
    for target in targets:
        match = None
        for j, line in enumerate(calc_lines):
            if j in used:
                continue
            if ((line.get("variant") or {}).get("id")) == target.variant_id:
                match = j
                break
        if match is not None:
            used.add(match)
            ids.append(require(calc_lines[match], "id"))
        else:
            ids.append(None)
    for i, line_id in enumerate(ids):
        if line_id is None:
            j = next(j for j in range(len(calc_lines)) if j not in used)
            used.add(j)
            ids[i] = require(calc_lines[j], "id")
    return ids
