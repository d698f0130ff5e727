#!/usr/bin/env python3
"""
Tests for the remote order orchestrator

Run with: python -m pytest tests/test_order_flows.py -v
"""

import os
import re
import sys
from decimal import Decimal

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from order_builder import build_line_item
from order_flows import OrderOrchestrator, match_calculated_lines, plan_order
from order_models import Strategy, draft_from_input
from retry_policy import RetryPolicy
from shopify_client import RemoteError, ResponseShapeError, ShopifyClient, TransportError
from shopify_config import ShopifyConfig

CONFIG = ShopifyConfig(shop="test-shop.myshopify.com", token="shpat_test")
ORDER_GID = "gid://shopify/Order/1001"
OPERATION = re.compile(r"\b(?:query|mutation)\s+(\w+)")


class FakeShopify(ShopifyClient):
    """ShopifyClient with canned transport; mutate() and userErrors checks stay real."""

    def __init__(self, graphql=None, rest=None):
        self.config = CONFIG
        self.graphql_responses = graphql or {}
        self.rest_responses = rest or {}
        self.calls = []

    @staticmethod
    def _next(responses, key):
        resp = responses[key]
        if isinstance(resp, list):
            resp = resp.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp

    def graphql(self, query, variables=None):
        op = OPERATION.search(query).group(1)
        self.calls.append(("graphql", op, variables))
        return self._next(self.graphql_responses, op)

    def rest(self, method, path, payload=None, params=None, ok_status=(200, 201)):
        self.calls.append(("rest", f"{method} {path}", payload))
        return self._next(self.rest_responses, f"{method} {path}")

    def sent(self, name):
        return [c[2] for c in self.calls if c[1] == name]


def money(amount):
    return {"shopMoney": {"amount": amount, "currencyCode": "USD"}}


def order_node(total="80.00", tax="0.00", items=(("Widget", 1, "80.00"),)):
    return {
        "id": ORDER_GID,
        "name": "#1001",
        "totalPriceSet": money(total),
        "totalTaxSet": money(tax),
        "taxLines": [],
        "discountCodes": [],
        "lineItems": {"edges": [
            {"node": {
                "id": f"gid://shopify/LineItem/{i}",
                "title": title,
                "quantity": qty,
                "originalUnitPriceSet": money(price),
                "discountedUnitPriceSet": money(price),
            }}
            for i, (title, qty, price) in enumerate(items)
        ]},
    }


def fulfillment_response(count):
    nodes = [{
        "node": {
            "id": f"gid://shopify/FulfillmentOrder/{i}",
            "status": "OPEN",
            "requestStatus": "UNSUBMITTED",
            "assignedLocation": {"location": {"id": "gid://shopify/Location/1"}},
            "lineItems": {"edges": [{"node": {"id": "gid://shopify/FulfillmentOrderLineItem/1", "remainingQuantity": 1, "lineItem": {"title": "Widget"}}}]},
        }
    } for i in range(count)]
    return {"order": {"id": ORDER_GID, "fulfillmentOrders": {"edges": nodes}}}


def ok(root, **fields):
    return {root: dict(fields, userErrors=[])}


def draft_flow_responses(fulfillment=None):
    return {
        "draftOrderCreate": ok("draftOrderCreate", draftOrder={"id": "gid://shopify/DraftOrder/5", "name": "#D5"}),
        "draftOrderCalculate": ok("draftOrderCalculate", calculatedDraftOrder={
            "subtotalPriceSet": money("80.00"), "totalTaxSet": money("0.00"), "totalPriceSet": money("80.00"),
        }),
        "draftOrderComplete": ok("draftOrderComplete", draftOrder={"id": "gid://shopify/DraftOrder/5", "status": "COMPLETED"}),
        "draftOrderLink": {"node": {"id": "gid://shopify/DraftOrder/5", "status": "COMPLETED", "order": order_node()}},
        "metafieldsSet": ok("metafieldsSet", metafields=[{"id": "gid://shopify/Metafield/9", "namespace": "custom", "key": "shipping_note"}]),
        "fulfillmentOrders": fulfillment if fulfillment is not None else fulfillment_response(1),
        "orderUpdate": ok("orderUpdate", order={"id": ORDER_GID, "note": ""}),
    }


def discounted_draft(**order):
    items = [{
        "productId": "111", "quantity": 1, "price": "100.00", "name": "Widget",
        "discountApplications": [{"title": "", "value": "20", "valueType": "percentage"}],
    }]
    return draft_from_input({"order": dict(order, items=items)})


VAT = [{"title": "VAT", "rate": 0.085, "price": "8.50"}]

REST_ORDER = {"order": {
    "id": 1001,
    "name": "#1001",
    "total_price": "108.50",
    "total_tax": "8.50",
    "tax_lines": [{"title": "VAT", "rate": 0.085, "price": "8.50"}],
    "line_items": [{"id": 5, "title": "Widget", "quantity": 1, "price": "100.00"}],
}}


class TestDraftFlow:
    """Tests for draftOrderCreate -> complete -> resolve -> note -> fulfillment lookup."""

    def test_full_sequence(self):
        """Fulfillment orders show up on the 5th lookup after four growing waits."""
        fo = [fulfillment_response(0)] * 4 + [fulfillment_response(1)]
        client = FakeShopify(graphql=draft_flow_responses(fulfillment=list(fo)))
        sleeps = []
        conf = OrderOrchestrator(client, CONFIG, sleep=sleeps.append).create_order(
            discounted_draft(shippingNote="Leave at the back door")
        )

        assert conf.strategy is Strategy.DRAFT_ORDER_FLOW
        assert conf.order_id == ORDER_GID
        assert conf.name == "#1001"
        assert conf.total_price == Decimal("80.00")
        assert len(conf.fulfillment_orders) == 1
        assert conf.fulfillment_orders[0].line_items[0].remaining_quantity == 1
        assert conf.warnings == ()
        assert sleeps == [3.0, 4.5, 6.75, 10.125]

        line = client.sent("draftOrderCreate")[0]["input"]["lineItems"][0]
        assert line["originalUnitPrice"] == "100.00"
        assert line["appliedDiscount"]["valueType"] == "PERCENTAGE"
        assert client.sent("draftOrderComplete")[0] == {"id": "gid://shopify/DraftOrder/5", "paymentPending": False}
        metafield = client.sent("metafieldsSet")[0]["metafields"][0]
        assert metafield["ownerId"] == ORDER_GID
        assert (metafield["namespace"], metafield["key"]) == ("custom", "shipping_note")
        assert metafield["value"] == "Leave at the back door"

    def test_note_failure_is_only_a_warning(self):
        responses = draft_flow_responses()
        responses["metafieldsSet"] = {"metafieldsSet": {"metafields": [], "userErrors": [{"field": ["metafields", "0", "value"], "message": "is too long"}]}}
        client = FakeShopify(graphql=responses)
        conf = OrderOrchestrator(client, CONFIG, sleep=lambda s: None).create_order(discounted_draft(shippingNote="x"))
        assert conf.order_id == ORDER_GID
        assert len(conf.warnings) == 1
        assert "shipping note" in conf.warnings[0]
        assert "metafields.0.value: is too long" in conf.warnings[0]

    def test_preview_failure_is_only_a_warning(self):
        responses = draft_flow_responses()
        responses["draftOrderCalculate"] = RemoteError("GraphQL errors: throttled")
        conf = OrderOrchestrator(FakeShopify(graphql=responses), CONFIG, sleep=lambda s: None).create_order(discounted_draft())
        assert conf.order_id == ORDER_GID
        assert any("preview" in w for w in conf.warnings)

    def test_completion_errors_abort(self):
        responses = draft_flow_responses()
        responses["draftOrderComplete"] = {"draftOrderComplete": {"draftOrder": None, "userErrors": [{"field": None, "message": "Variant is out of stock"}]}}
        client = FakeShopify(graphql=responses)
        with pytest.raises(RemoteError) as exc:
            OrderOrchestrator(client, CONFIG, sleep=lambda s: None).create_order(discounted_draft())
        assert "Variant is out of stock" in str(exc.value)
        assert client.sent("draftOrderLink") == []

    def test_missing_linked_order(self):
        responses = draft_flow_responses()
        responses["draftOrderLink"] = {"node": {"id": "gid://shopify/DraftOrder/5", "status": "OPEN", "order": None}}
        with pytest.raises(ResponseShapeError):
            OrderOrchestrator(FakeShopify(graphql=responses), CONFIG, sleep=lambda s: None).create_order(discounted_draft())

    def test_fulfillment_lookup_exhausted(self):
        """No fulfillment orders after every attempt is a warning, not a failure."""
        client = FakeShopify(graphql=draft_flow_responses(fulfillment=fulfillment_response(0)))
        sleeps = []
        orch = OrderOrchestrator(client, CONFIG, retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0), sleep=sleeps.append)
        conf = orch.create_order(discounted_draft())
        assert conf.fulfillment_orders == ()
        assert sleeps == [1.0, 2.0]
        assert len(client.sent("fulfillmentOrders")) == 3
        assert any("No fulfillment orders" in w for w in conf.warnings)

    def test_payment_pending_records_payments(self):
        client = FakeShopify(
            graphql=draft_flow_responses(),
            rest={"POST orders/1001/transactions.json": {"transaction": {"id": 77}}},
        )
        draft = discounted_draft(payments=[
            {"amount": "80.00", "paymentName": "Cash"},
            {"amount": "0", "paymentName": "Gift card"},
        ])
        OrderOrchestrator(client, CONFIG, sleep=lambda s: None).create_order(draft, payment_pending=True)
        assert client.sent("draftOrderComplete")[0]["paymentPending"] is True
        sent = client.sent("POST orders/1001/transactions.json")
        assert len(sent) == 1
        assert sent[0]["transaction"] == {
            "kind": "sale", "gateway": "Cash", "status": "success",
            "source": "external", "amount": "80.00", "currency": "USD",
        }

    def test_paid_orders_skip_payment_records(self):
        client = FakeShopify(graphql=draft_flow_responses())
        draft = discounted_draft(payments=[{"amount": "80.00", "paymentName": "Cash"}])
        OrderOrchestrator(client, CONFIG, sleep=lambda s: None).create_order(draft)
        assert not [c for c in client.calls if c[0] == "rest"]


class TestRestFlow:
    """Tests for REST orders.json creation with custom tax."""

    def test_creates_order_with_tax(self):
        client = FakeShopify(rest={"POST orders.json": REST_ORDER})
        draft = draft_from_input({"order": {"items": [{"productId": "111", "quantity": 1, "price": "100.00"}], "taxLines": VAT}})
        conf = OrderOrchestrator(client, CONFIG).create_order(draft)
        assert conf.strategy is Strategy.DIRECT_WITH_TAX_ONLY
        assert conf.order_id == ORDER_GID
        assert conf.total_tax == Decimal("8.50")
        assert conf.tax_lines[0].title == "VAT"
        body = client.sent("POST orders.json")[0]["order"]
        assert body["tax_lines"] == [{"title": "VAT", "rate": 0.085, "price": "8.50", "channel_liable": False}]
        assert body["line_items"][0]["variant_id"] == 111

    def test_http_failure_propagates(self):
        client = FakeShopify(rest={"POST orders.json": TransportError("HTTP 422 from POST orders.json: invalid")})
        draft = draft_from_input({"order": {"items": [{"productId": "111", "quantity": 1, "price": "1.00"}], "taxLines": VAT}})
        with pytest.raises(TransportError):
            OrderOrchestrator(client, CONFIG).create_order(draft)

    def test_missing_order_object(self):
        client = FakeShopify(rest={"POST orders.json": {"errors": "nope"}})
        draft = draft_from_input({"order": {"items": [{"productId": "111", "quantity": 1, "price": "1.00"}], "taxLines": VAT}})
        with pytest.raises(ResponseShapeError):
            OrderOrchestrator(client, CONFIG).create_order(draft)

    def test_shipping_note_and_shipping_tax_note(self):
        client = FakeShopify(
            rest={"POST orders.json": REST_ORDER},
            graphql={
                "metafieldsSet": ok("metafieldsSet", metafields=[{"id": "gid://shopify/Metafield/9"}]),
                "orderUpdate": ok("orderUpdate", order={"id": ORDER_GID}),
            },
        )
        draft = draft_from_input({"order": {
            "items": [{"productId": "111", "quantity": 1, "price": "100.00"}],
            "taxLines": VAT,
            "note": "POS sale",
            "additionalData": {"shipping_note": "Ring twice"},
            "totalShippingExTax": "10.00",
            "totalTaxShipping": "1.00",
        }})
        conf = OrderOrchestrator(client, CONFIG).create_order(draft)
        assert conf.warnings == ()
        assert client.sent("metafieldsSet")[0]["metafields"][0]["value"] == "Ring twice"
        note = client.sent("orderUpdate")[0]["input"]["note"]
        assert note.startswith("POS sale\n\n--- Shipping Tax ---")
        assert "Shipping Tax: 1.00 (Rate: 10.00%)" in note

    def test_pickup_uses_configured_location(self):
        config = ShopifyConfig(shop="test-shop.myshopify.com", token="shpat_test", pickup_location_id="gid://shopify/Location/42")
        client = FakeShopify(rest={"POST orders.json": REST_ORDER})
        draft = draft_from_input({"order": {"items": [{"productId": "111", "quantity": 1, "price": "100.00"}], "taxLines": VAT}})
        OrderOrchestrator(client, config).create_order(draft, pickup=True)
        body = client.sent("POST orders.json")[0]["order"]
        assert body["location_id"] == 42
        assert body["shipping_lines"][0]["delivery_category"] == "pickup"


class TestGraphqlFlow:
    """Tests for orderCreate with tax and folded-in discounts."""

    def test_creates_order(self):
        client = FakeShopify(graphql={"orderCreate": ok("orderCreate", order=order_node(total="88.50", tax="8.50"))})
        conf = OrderOrchestrator(client, CONFIG).create_order(discounted_draft(taxLines=VAT))
        assert conf.strategy is Strategy.DIRECT_WITH_TAX_AND_DISCOUNT
        assert conf.total_tax == Decimal("8.50")
        sent = client.sent("orderCreate")[0]
        assert sent["options"]["sendReceipt"] is False
        li = sent["order"]["lineItems"][0]
        assert li["priceSet"]["shopMoney"]["amount"] == "80.00"
        assert sent["order"]["taxLines"][0]["title"] == "VAT"

    def test_user_errors_are_concatenated(self):
        client = FakeShopify(graphql={"orderCreate": {"orderCreate": {"order": None, "userErrors": [
            {"field": ["order", "lineItems", "0", "variantId"], "message": "is invalid"},
            {"field": ["order", "taxLines"], "message": "rate is required"},
        ]}}})
        with pytest.raises(RemoteError) as exc:
            OrderOrchestrator(client, CONFIG).create_order(discounted_draft(taxLines=VAT))
        assert str(exc.value) == (
            "orderCreate failed. User errors: order.lineItems.0.variantId: is invalid; order.taxLines: rate is required"
        )

    def test_no_frills(self):
        client = FakeShopify(graphql={"orderCreate": ok("orderCreate", order=order_node(total="100.00"))})
        conf = OrderOrchestrator(client, CONFIG).create_order(discounted_draft(taxLines=VAT), strategy=Strategy.DIRECT_NO_FRILLS)
        assert conf.strategy is Strategy.DIRECT_NO_FRILLS
        order = client.sent("orderCreate")[0]["order"]
        assert order["lineItems"][0]["priceSet"]["shopMoney"]["amount"] == "100.00"
        assert "taxLines" not in order


class TestHybridFlow:
    """Tests for REST create + order edit discounts + tax restore."""

    def graphql_responses(self):
        return {
            "orderEditBegin": ok("orderEditBegin", calculatedOrder={
                "id": "gid://shopify/CalculatedOrder/7",
                "lineItems": {"edges": [{"node": {
                    "id": "gid://shopify/CalculatedLineItem/70",
                    "quantity": 1,
                    "variant": {"id": "gid://shopify/ProductVariant/111"},
                }}]},
            }),
            "orderEditAddLineItemDiscount": ok("orderEditAddLineItemDiscount", addedDiscountStagedChange={"id": "x"}),
            "orderEditCommit": ok("orderEditCommit", order={"id": ORDER_GID, "name": "#1001"}),
            "orderLookup": {"order": order_node(total="88.50", tax="8.50")},
        }

    def test_discounts_then_tax_restore(self):
        client = FakeShopify(graphql=self.graphql_responses(), rest={
            "POST orders.json": REST_ORDER,
            "PUT orders/1001.json": {"order": {"id": 1001, "tax_lines": [{"title": "VAT", "price": "8.50"}]}},
        })
        conf = OrderOrchestrator(client, CONFIG).create_order(discounted_draft(taxLines=VAT), prefer_strikethrough=True)

        assert conf.strategy is Strategy.HYBRID_EDIT
        assert conf.warnings == ()
        assert conf.total_price == Decimal("88.50")
        created = client.sent("POST orders.json")[0]["order"]["line_items"][0]
        assert created["price"] == "100.00"
        assert "discount_allocations" not in created
        discount = client.sent("orderEditAddLineItemDiscount")[0]
        assert discount["lineItemId"] == "gid://shopify/CalculatedLineItem/70"
        assert discount["discount"] == {"percentValue": 20.0, "description": "20% off"}
        assert client.sent("orderEditCommit")[0]["notifyCustomer"] is False
        restored = client.sent("PUT orders/1001.json")[0]["order"]
        assert restored["tax_lines"] == [{"title": "VAT", "rate": 0.085, "price": "8.50", "channel_liable": False}]

    def test_tax_restore_falls_back_to_line_items(self):
        client = FakeShopify(graphql=self.graphql_responses(), rest={
            "POST orders.json": REST_ORDER,
            "PUT orders/1001.json": [{"order": {"id": 1001, "tax_lines": []}}, {"order": {"id": 1001}}],
            "GET orders/1001.json": {"order": {"id": 1001, "line_items": [{"id": 5}]}},
        })
        conf = OrderOrchestrator(client, CONFIG).create_order(discounted_draft(taxLines=VAT), strategy=Strategy.HYBRID_EDIT)
        assert conf.warnings == ()
        puts = client.sent("PUT orders/1001.json")
        assert len(puts) == 2
        assert puts[1]["order"]["line_items"] == [
            {"id": 5, "tax_lines": [{"title": "VAT", "rate": 0.085, "price": "8.50", "channel_liable": False}]},
        ]

    def test_item_level_tax_restored_per_line(self):
        """Tax carried on the items goes back per line item without an order-level attempt."""
        client = FakeShopify(graphql=self.graphql_responses(), rest={
            "POST orders.json": REST_ORDER,
            "GET orders/1001.json": {"order": {"id": 1001, "line_items": [{"id": 5}]}},
            "PUT orders/1001.json": {"order": {"id": 1001}},
        })
        draft = draft_from_input({"order": {"items": [{
            "productId": "111", "quantity": 1, "price": "100.00", "name": "Widget",
            "discountApplications": [{"title": "", "value": "20", "valueType": "percentage"}],
            "taxLines": VAT,
        }]}})
        conf = OrderOrchestrator(client, CONFIG).create_order(draft, strategy=Strategy.HYBRID_EDIT)

        assert conf.warnings == ()
        created = client.sent("POST orders.json")[0]["order"]
        assert "tax_lines" not in created
        puts = client.sent("PUT orders/1001.json")
        assert len(puts) == 1
        assert "tax_lines" not in puts[0]["order"]
        assert puts[0]["order"]["line_items"] == [
            {"id": 5, "tax_lines": [{"title": "VAT", "rate": 0.085, "price": "8.50", "channel_liable": False}]},
        ]

    def test_tax_restore_failure_is_a_warning(self):
        client = FakeShopify(graphql=self.graphql_responses(), rest={
            "POST orders.json": REST_ORDER,
            "PUT orders/1001.json": TransportError("HTTP 422 from PUT orders/1001.json"),
        })
        conf = OrderOrchestrator(client, CONFIG).create_order(discounted_draft(taxLines=VAT), strategy=Strategy.HYBRID_EDIT)
        assert conf.order_id == ORDER_GID
        assert any("restore tax" in w for w in conf.warnings)

    def test_no_item_discounts_skips_edit(self):
        client = FakeShopify(rest={"POST orders.json": REST_ORDER})
        draft = draft_from_input({"order": {"items": [{"productId": "111", "quantity": 1, "price": "100.00"}], "taxLines": VAT}})
        conf = OrderOrchestrator(client, CONFIG).create_order(draft, strategy=Strategy.HYBRID_EDIT)
        assert conf.strategy is Strategy.HYBRID_EDIT
        assert client.sent("orderEditBegin") == []


class TestSteps:
    """Tests for the stand-alone steps behind the order subcommands."""

    def test_clear_shipping_note(self):
        client = FakeShopify(
            graphql={"orderMetafield": {"order": {"metafield": {"id": "gid://shopify/Metafield/55", "value": "x"}}}},
            rest={"DELETE metafields/55.json": {}},
        )
        assert OrderOrchestrator(client, CONFIG).clear_shipping_note(ORDER_GID) is True
        assert len(client.sent("DELETE metafields/55.json")) == 1

    def test_clear_missing_shipping_note(self):
        client = FakeShopify(graphql={"orderMetafield": {"order": {"metafield": None}}})
        assert OrderOrchestrator(client, CONFIG).clear_shipping_note(ORDER_GID) is False
        assert not [c for c in client.calls if c[0] == "rest"]

    def test_mark_paid(self):
        client = FakeShopify(rest={"PUT orders/1001.json": {"order": {"id": 1001, "financial_status": "paid"}}})
        assert OrderOrchestrator(client, CONFIG).mark_paid(ORDER_GID)["financial_status"] == "paid"
        assert client.sent("PUT orders/1001.json")[0] == {"order": {"id": 1001, "financial_status": "paid"}}

    def test_list_transactions(self):
        client = FakeShopify(rest={"GET orders/1001/transactions.json": {"transactions": [{"id": 1, "kind": "sale"}]}})
        assert OrderOrchestrator(client, CONFIG).list_transactions("1001") == [{"id": 1, "kind": "sale"}]


class TestMatchCalculatedLines:
    """Tests for pairing draft lines with calculated line items."""

    def targets(self):
        draft = draft_from_input({"order": {"items": [
            {"productId": "1", "quantity": 1, "price": "1.00"},
            {"productId": "2", "quantity": 1, "price": "1.00"},
        ]}})
        return [build_line_item(i) for i in draft.line_items]

    def test_matches_by_variant(self):
        calc = [
            {"id": "c2", "variant": {"id": "gid://shopify/ProductVariant/2"}},
            {"id": "c1", "variant": {"id": "gid://shopify/ProductVariant/1"}},
        ]
        assert match_calculated_lines(self.targets(), calc) == ["c1", "c2"]

    def test_falls_back_to_position(self):
        calc = [{"id": "c1", "variant": None}, {"id": "c2", "variant": {"id": "gid://shopify/ProductVariant/2"}}]
        assert match_calculated_lines(self.targets(), calc) == ["c1", "c2"]

    def test_too_few_lines(self):
        with pytest.raises(ResponseShapeError):
            match_calculated_lines(self.targets(), [{"id": "c1"}])


class TestPlanOrder:
    """Tests for the dry-run plan."""

    def test_every_strategy_plans_without_network(self):
        draft = discounted_draft(taxLines=VAT)
        for strategy in Strategy:
            plan = plan_order(draft, strategy)
            assert plan["strategy"] == strategy.value
            assert plan["lineItems"][0]["discountedPrice"] == "80.00"
            assert plan["taxDistribution"] == [{"lineIndex": 0, "title": "VAT", "rate": "0.085", "amount": "8.50"}]
            assert plan["requests"]

    def test_hybrid_plan_lists_edit_discounts(self):
        plan = plan_order(discounted_draft(taxLines=VAT), Strategy.HYBRID_EDIT)
        assert plan["requests"]["orderEditAddLineItemDiscount"] == [
            {"lineIndex": 0, "discount": {"percentValue": 20.0, "description": "20% off"}},
        ]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
