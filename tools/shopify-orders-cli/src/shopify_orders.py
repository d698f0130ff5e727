#!/usr/bin/env python3
"""
shopify-orders - create and inspect Shopify orders from the command line

Orders are described in a local input.json ({"order": {...}}) and sent via
whichever Shopify mechanism supports the requested tax/discount mix:
draft order, REST orders.json, GraphQL orderCreate, or create + order edit.
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from customer_addresses import (
    add_addresses,
    resolve_customer_id,
    set_default_address,
    unset_default_address,
)
from order_builder import classify, format_money
from order_flows import ORDER_FIELDS, OrderOrchestrator, plan_order
from order_models import (
    ORDER_GID_PREFIX,
    RemoteOrderConfirmation,
    Strategy,
    confirmation_from_graphql,
    load_draft,
    parse_money,
)
from retry_policy import RetryPolicy
from shopify_client import ShopifyClient, ShopifyError, edges
from shopify_config import ShopifyConfig, load_env_files

REQUIRED_SCOPES = (
    "read_orders",
    "write_orders",
    "read_draft_orders",
    "write_draft_orders",
    "read_merchant_managed_fulfillment_orders",
    "write_merchant_managed_fulfillment_orders",
    "read_assigned_fulfillment_orders",
    "write_assigned_fulfillment_orders",
)

ORDER_BY_NAME = """
query orderByName($query: String!) {
  orders(first: 1, query: $query) { edges { node { id name } } }
}
"""


def grid(rows: List[List[Any]], headers: List[str]) -> str:
    return tabulate(rows, headers=headers, tablefmt="grid")


def emit(args, data: Any, rows: Optional[List[List[Any]]] = None, headers: Optional[List[str]] = None) -> None:
    """Print data as JSON or as a table of the given rows."""
    if args.format == "json" or rows is None:
        print(json.dumps(data, indent=2, default=str))
    elif rows:
        print(grid(rows, headers or []))
    else:
        print("(none)")


def resolve_order_id(client, ref: str) -> str:
    """Order GID from a GID, a numeric id, or an order name such as #1001."""
    ref = ref.strip()
    if ref.startswith("gid://"):
        return ref
    if ref.isdigit():
        return f"{ORDER_GID_PREFIX}{ref}"
    name = ref if ref.startswith("#") else f"#{ref}"
    found = edges(client.graphql(ORDER_BY_NAME, {"query": f"name:{name}"}).get("orders"))
    if not found:
        raise ShopifyError(f"No order named {name}")
    return found[0]["id"]


def confirmation_summary(conf: RemoteOrderConfirmation) -> Dict[str, Any]:
    return {
        "orderId": conf.order_id,
        "name": conf.name,
        "strategy": conf.strategy.value if conf.strategy else None,
        "totalPrice": format_money(conf.total_price),
        "totalTax": format_money(conf.total_tax),
        "taxLines": [
            {"title": t.title, "rate": str(t.rate), "amount": format_money(t.amount)} for t in conf.tax_lines
        ],
        "discountCodes": list(conf.discount_codes),
        "lineItems": [
            {"title": li.title, "quantity": li.quantity, "unitPrice": format_money(li.unit_price)}
            for li in conf.line_items
        ],
        "fulfillmentOrders": [
            {"id": fo.id, "status": fo.status, "requestStatus": fo.request_status, "locationId": fo.location_id}
            for fo in conf.fulfillment_orders
        ],
        "warnings": list(conf.warnings),
    }


def print_confirmation(conf: RemoteOrderConfirmation, args) -> None:
    summary = confirmation_summary(conf)
    if args.format == "json":
        print(json.dumps(summary, indent=2))
    else:
        print(f"✓ Order {conf.name} created ({conf.order_id})")
        print(grid([
            ["Strategy", summary["strategy"]],
            ["Total", summary["totalPrice"]],
            ["Tax", summary["totalTax"]],
            ["Discount codes", ", ".join(conf.discount_codes) or "-"],
        ], ["Field", "Value"]))
        if conf.line_items:
            print(grid([[li.title, li.quantity, format_money(li.unit_price)] for li in conf.line_items],
                       ["Item", "Qty", "Unit price"]))
        if conf.tax_lines:
            print(grid([[t.title, str(t.rate), format_money(t.amount)] for t in conf.tax_lines],
                       ["Tax line", "Rate", "Amount"]))
        if conf.fulfillment_orders:
            print(grid([[fo.id, fo.status, fo.request_status, fo.location_id] for fo in conf.fulfillment_orders],
                       ["Fulfillment order", "Status", "Request", "Location"]))
        for w in conf.warnings:
            print(f"! {w}")
    if args.raw:
        print(json.dumps(conf.raw, indent=2))


# ---- commands ----


def cmd_auth(client, args) -> int:
    data = client.graphql("query { shop { name myshopifyDomain currencyCode } }")
    shop = data.get("shop") or {}
    cfg = client.config
    emit(args, data, [
        ["Shop", shop.get("name")],
        ["Domain", shop.get("myshopifyDomain")],
        ["Currency", shop.get("currencyCode")],
        ["API version", cfg.api_version],
        ["Token", cfg.masked_token()],
    ], ["Field", "Value"])
    return 0


def cmd_scopes(client, args) -> int:
    data = client.graphql("query { currentAppInstallation { accessScopes { handle } } }")
    granted = {s.get("handle") for s in (data.get("currentAppInstallation") or {}).get("accessScopes") or []}
    missing = [s for s in REQUIRED_SCOPES if s not in granted]
    emit(args, {"granted": sorted(granted), "missing": missing},
         [[s, "yes" if s in granted else "MISSING"] for s in REQUIRED_SCOPES], ["Scope", "Granted"])
    if missing:
        logging.warning("Missing scopes: %s", ", ".join(missing))
        return 1
    return 0


def cmd_orders_create(client, args) -> int:
    currency = client.config.currency if client else os.environ.get("SHOPIFY_CURRENCY", "USD")
    draft = load_draft(args.input, currency)
    if args.strategy == "auto":
        strategy = classify(draft, prefer_strikethrough=args.strikethrough)
    else:
        strategy = Strategy(args.strategy)

    if args.dry_run:
        pickup_location = client.config.pickup_location_id if client else os.environ.get("SHOPIFY_PICKUP_LOCATION_ID", "")
        print(json.dumps(plan_order(draft, strategy, pickup=args.pickup, pickup_location_id=pickup_location), indent=2))
        return 0

    orchestrator = OrderOrchestrator(client, client.config)
    conf = orchestrator.create_order(
        draft,
        strategy=strategy,
        payment_pending=args.payment_pending,
        pickup=args.pickup,
    )
    print_confirmation(conf, args)
    return 0


def cmd_orders_get(client, args) -> int:
    order_id = resolve_order_id(client, args.order)
    q = """
    query orderDetails($id: ID!) {
      order(id: $id) {
        %s
        createdAt
        displayFinancialStatus
        displayFulfillmentStatus
      }
    }
    """ % ORDER_FIELDS
    order = client.graphql(q, {"id": order_id}).get("order")
    if not order:
        raise ShopifyError(f"Order {order_id} not found")
    conf = confirmation_from_graphql(order)
    if args.format == "json" or args.raw:
        print(json.dumps(order, indent=2))
        return 0
    print(grid([
        ["Order", conf.name],
        ["ID", conf.order_id],
        ["Created", order.get("createdAt")],
        ["Financial", order.get("displayFinancialStatus")],
        ["Fulfillment", order.get("displayFulfillmentStatus")],
        ["Total", format_money(conf.total_price)],
        ["Tax", format_money(conf.total_tax)],
    ], ["Field", "Value"]))
    print(grid([[li.title, li.quantity, format_money(li.unit_price)] for li in conf.line_items],
               ["Item", "Qty", "Unit price"]))
    if conf.tax_lines:
        print(grid([[t.title, str(t.rate), format_money(t.amount)] for t in conf.tax_lines],
                   ["Tax line", "Rate", "Amount"]))
    return 0


def cmd_orders_fulfillment_orders(client, args) -> int:
    order_id = resolve_order_id(client, args.order)
    policy = RetryPolicy(max_attempts=args.attempts if args.wait else 1)
    orchestrator = OrderOrchestrator(client, client.config, retry_policy=policy)
    found = orchestrator.fetch_fulfillment_orders(order_id)
    rows = []
    for fo in found:
        if not fo.line_items:
            rows.append([fo.id, fo.status, fo.request_status, fo.location_id, "", ""])
        for li in fo.line_items:
            rows.append([fo.id, fo.status, fo.request_status, fo.location_id, li.title, li.remaining_quantity])
    data = [
        {
            "id": fo.id,
            "status": fo.status,
            "requestStatus": fo.request_status,
            "locationId": fo.location_id,
            "lineItems": [{"id": li.id, "title": li.title, "remainingQuantity": li.remaining_quantity} for li in fo.line_items],
        }
        for fo in found
    ]
    emit(args, data, rows, ["Fulfillment order", "Status", "Request", "Location", "Item", "Remaining"])
    return 0


def cmd_orders_delivery_method(client, args) -> int:
    name = args.name if args.name.startswith("#") else f"#{args.name}"
    q = """
    query deliveryMethod($query: String!) {
      orders(first: 1, query: $query) {
        edges {
          node {
            id
            name
            shippingLine { title code source carrierIdentifier deliveryCategory }
            fulfillmentOrders(first: 10) {
              edges {
                node {
                  id
                  status
                  deliveryMethod { id methodType }
                  assignedLocation { name location { id } }
                }
              }
            }
          }
        }
      }
    }
    """
    found = edges(client.graphql(q, {"query": f"name:{name}"}).get("orders"))
    if not found:
        raise ShopifyError(f"No order named {name}")
    order = found[0]
    line = order.get("shippingLine") or {}
    rows = [
        ["Order", f"{order.get('name')} ({order.get('id')})"],
        ["Shipping line", line.get("title") or "-"],
        ["Code", line.get("code") or "-"],
        ["Source", line.get("source") or "-"],
        ["Carrier", line.get("carrierIdentifier") or "-"],
        ["Delivery category", line.get("deliveryCategory") or "-"],
    ]
    for fo in edges(order.get("fulfillmentOrders")):
        method = fo.get("deliveryMethod") or {}
        loc = fo.get("assignedLocation") or {}
        rows.append([fo.get("id"), f"{method.get('methodType')} @ {loc.get('name')} [{fo.get('status')}]"])
    emit(args, order, rows, ["Field", "Value"])
    return 0


def cmd_orders_transactions(client, args) -> int:
    order_id = resolve_order_id(client, args.order)
    txs = OrderOrchestrator(client, client.config).list_transactions(order_id)
    rows = [[t.get("id"), t.get("kind"), t.get("status"), t.get("gateway"), t.get("amount"), t.get("currency"), t.get("created_at")]
            for t in txs]
    emit(args, txs, rows, ["ID", "Kind", "Status", "Gateway", "Amount", "Currency", "Created"])
    return 0


def cmd_orders_record_payment(client, args) -> int:
    amount = parse_money(args.amount)
    if amount is None or amount <= 0:
        raise SystemExit("--amount must be a positive decimal")
    order_id = resolve_order_id(client, args.order)
    tx = OrderOrchestrator(client, client.config).record_payment(
        order_id, amount, args.currency or client.config.currency, args.gateway
    )
    emit(args, tx, [[tx.get("id"), tx.get("kind"), tx.get("status"), tx.get("amount"), tx.get("currency")]],
         ["ID", "Kind", "Status", "Amount", "Currency"])
    return 0


def cmd_orders_mark_paid(client, args) -> int:
    order_id = resolve_order_id(client, args.order)
    order = OrderOrchestrator(client, client.config).mark_paid(order_id)
    emit(args, order, [[order.get("name"), order.get("financial_status")]], ["Order", "Financial status"])
    return 0


def cmd_orders_restore_tax(client, args) -> int:
    order_id = resolve_order_id(client, args.order)
    draft = load_draft(args.input, client.config.currency)
    ok = OrderOrchestrator(client, client.config).restore_tax_lines(order_id, draft)
    print(json.dumps({"ok": ok, "orderId": order_id}, indent=2))
    return 0 if ok else 1


def cmd_orders_shipping_note(client, args) -> int:
    order_id = resolve_order_id(client, args.order)
    orchestrator = OrderOrchestrator(client, client.config)
    if args.clear:
        removed = orchestrator.clear_shipping_note(order_id)
        print(json.dumps({"ok": True, "orderId": order_id, "removed": removed}, indent=2))
        return 0
    metafield_id = orchestrator.set_shipping_note(order_id, args.note)
    print(json.dumps({"ok": True, "orderId": order_id, "metafieldId": metafield_id}, indent=2))
    return 0


def cmd_inventory(client, args) -> int:
    variant_id = args.variant if args.variant.startswith("gid://") else f"gid://shopify/ProductVariant/{args.variant}"
    q = """
    query variantInventory($id: ID!) {
      productVariant(id: $id) {
        id
        title
        sku
        inventoryQuantity
        product { title }
        inventoryItem {
          id
          tracked
          inventoryLevels(first: 20) {
            edges {
              node {
                location { id name }
                quantities(names: ["available", "on_hand", "committed"]) { name quantity }
              }
            }
          }
        }
      }
    }
    """
    variant = client.graphql(q, {"id": variant_id}).get("productVariant")
    if not variant:
        raise ShopifyError(f"Variant {variant_id} not found")
    rows = []
    for level in edges((variant.get("inventoryItem") or {}).get("inventoryLevels")):
        qty = {x.get("name"): x.get("quantity") for x in level.get("quantities") or []}
        loc = level.get("location") or {}
        rows.append([loc.get("name"), loc.get("id"), qty.get("available"), qty.get("on_hand"), qty.get("committed")])
    if args.format != "json":
        print(f"{(variant.get('product') or {}).get('title')} / {variant.get('title')} (sku {variant.get('sku') or '-'})")
    emit(args, variant, rows, ["Location", "Location ID", "Available", "On hand", "Committed"])
    return 0


def cmd_locations(client, args) -> int:
    q = """
    query locations($first: Int!) {
      locations(first: $first) {
        edges {
          node {
            id
            name
            isActive
            fulfillsOnlineOrders
            fulfillmentService { id serviceName }
            address { city country }
          }
        }
      }
    }
    """
    found = edges(client.graphql(q, {"first": args.first}).get("locations"))
    rows = [[
        n.get("name"),
        n.get("id"),
        "yes" if n.get("isActive") else "no",
        "yes" if n.get("fulfillsOnlineOrders") else "no",
        (n.get("fulfillmentService") or {}).get("serviceName") or "-",
        ", ".join(x for x in ((n.get("address") or {}).get("city"), (n.get("address") or {}).get("country")) if x),
    ] for n in found]
    emit(args, found, rows, ["Name", "ID", "Active", "Online orders", "Fulfillment service", "Address"])
    return 0


def cmd_products_list(client, args) -> int:
    q = """
    query products($first: Int!, $query: String) {
      products(first: $first, query: $query) {
        edges {
          node {
            id
            title
            status
            vendor
            variants(first: 10) { edges { node { id title sku price inventoryQuantity } } }
          }
        }
      }
    }
    """
    found = edges(client.graphql(q, {"first": args.first, "query": args.query}).get("products"))
    rows = []
    for p in found:
        for v in edges(p.get("variants")):
            rows.append([p.get("title"), p.get("status"), v.get("title"), v.get("id"), v.get("sku"), v.get("price"), v.get("inventoryQuantity")])
    emit(args, found, rows, ["Product", "Status", "Variant", "Variant ID", "SKU", "Price", "Qty"])
    return 0


def parse_metafield_arg(text: str) -> Dict[str, str]:
    """'namespace.key=value' -> MetafieldInput."""
    if "=" not in text or "." not in text.split("=", 1)[0]:
        raise SystemExit(f"--metafield must look like namespace.key=value, got {text!r}")
    ref, value = text.split("=", 1)
    namespace, key = ref.split(".", 1)
    return {"namespace": namespace, "key": key, "type": "single_line_text_field", "value": value}


def cmd_products_create(client, args) -> int:
    product: Dict[str, Any] = {"title": args.title, "status": args.status}
    if args.description_html:
        product["descriptionHtml"] = args.description_html
    if args.vendor:
        product["vendor"] = args.vendor
    if args.product_type:
        product["productType"] = args.product_type
    if args.tags:
        product["tags"] = [t.strip() for t in args.tags.split(",") if t.strip()]
    if args.metafield:
        product["metafields"] = [parse_metafield_arg(m) for m in args.metafield]
    mutation = """
    mutation productCreate($product: ProductCreateInput!) {
      productCreate(product: $product) {
        product { id title handle status }
        userErrors { field message }
      }
    }
    """
    if args.dry_run:
        print(json.dumps({"mutation": "productCreate", "variables": {"product": product}}, indent=2))
        return 0
    created = client.mutate(mutation, {"product": product}, "productCreate").get("product") or {}
    emit(args, created, [[created.get("id"), created.get("title"), created.get("handle"), created.get("status")]],
         ["ID", "Title", "Handle", "Status"])
    return 0


def cmd_customers_add_addresses(client, args) -> int:
    with open(os.path.expanduser(args.file), "r", encoding="utf-8") as f:
        raw = json.load(f)
    addresses = raw.get("addresses") if isinstance(raw, dict) else raw
    if not isinstance(addresses, list) or not addresses:
        raise SystemExit(f"{args.file} must hold a list of addresses (or {{\"addresses\": [...]}})")
    customer_id = resolve_customer_id(client, args.customer)
    created = add_addresses(client, customer_id, addresses, set_default=args.set_default)
    emit(args, created, [[a.get("id"), a.get("address1"), a.get("city")] for a in created], ["Address ID", "Address", "City"])
    return 0


def _default_address_rows(customer: Dict[str, Any]) -> List[List[Any]]:
    default = customer.get("defaultAddress") or {}
    return [[customer.get("id"), default.get("id"), default.get("address1"), default.get("city")]]


def cmd_customers_set_default_address(client, args) -> int:
    customer_id = resolve_customer_id(client, args.customer) if args.customer else None
    customer = set_default_address(client, args.address, customer_id)
    emit(args, customer, _default_address_rows(customer), ["Customer", "Default address", "Address", "City"])
    return 0


def cmd_customers_unset_default_address(client, args) -> int:
    customer_id = resolve_customer_id(client, args.customer) if args.customer else None
    customer = unset_default_address(client, args.address, customer_id)
    emit(args, customer, _default_address_rows(customer), ["Customer", "Default address", "Address", "City"])
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="shopify-orders",
        description="Create and inspect Shopify orders via the Admin API",
    )
    p.add_argument("--env", help="Path to a .env file (default: tool .env, ./.env, then ~/AGENTS.env)")
    p.add_argument("--format", "-f", choices=["table", "json"], default="table", help="Output format")
    p.add_argument("--raw", action="store_true", help="Also print the raw Shopify response")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sp = p.add_subparsers(dest="cmd", required=True)

    pa = sp.add_parser("auth", help="Verify credentials (shop name/domain)")
    pa.set_defaults(func=cmd_auth)

    psc = sp.add_parser("scopes", help="Check granted access scopes (exit 1 if any required scope is missing)")
    psc.set_defaults(func=cmd_scopes)

    pord = sp.add_parser("orders", help="Order operations")
    so = pord.add_subparsers(dest="ord_cmd", required=True)

    poc = so.add_parser("create", help="Create an order from input.json")
    poc.add_argument("input", help='Path to input.json with a top-level "order" object')
    poc.add_argument("--strategy", default="auto", choices=["auto"] + [s.value for s in Strategy],
                     help="Creation mechanism (default: picked from the tax/discount mix)")
    poc.add_argument("--strikethrough", action="store_true",
                     help="With tax + discounts, use create + order edit so Shopify shows struck-out prices")
    poc.add_argument("--payment-pending", action="store_true",
                     help="Draft flow: complete with payment pending and record input payments as transactions")
    poc.add_argument("--pickup", action="store_true", help="REST flows: mark the shipping line as local pickup")
    poc.add_argument("--dry-run", action="store_true", help="Print the planned requests without calling Shopify")
    poc.set_defaults(func=cmd_orders_create)

    pog = so.add_parser("get", help="Show an order's status, items and tax lines")
    pog.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    pog.set_defaults(func=cmd_orders_get)

    pfo = so.add_parser("fulfillment-orders", help="List fulfillment orders for an order")
    pfo.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    pfo.add_argument("--wait", action="store_true", help="Retry with backoff until fulfillment orders appear")
    pfo.add_argument("--attempts", type=int, default=5)
    pfo.set_defaults(func=cmd_orders_fulfillment_orders)

    pdm = so.add_parser("delivery-method", help="Show shipping line and delivery method for an order name")
    pdm.add_argument("name", help="Order name, e.g. #1001")
    pdm.set_defaults(func=cmd_orders_delivery_method)

    ptx = so.add_parser("transactions", help="List an order's transactions")
    ptx.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    ptx.set_defaults(func=cmd_orders_transactions)

    prp = so.add_parser("record-payment", help="Record a manual sale transaction")
    prp.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    prp.add_argument("--amount", required=True)
    prp.add_argument("--gateway", default="manual")
    prp.add_argument("--currency")
    prp.set_defaults(func=cmd_orders_record_payment)

    pmp = so.add_parser("mark-paid", help="Set financial_status=paid")
    pmp.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    pmp.set_defaults(func=cmd_orders_mark_paid)

    prt = so.add_parser("restore-tax", help="Re-apply input.json tax lines to an existing order")
    prt.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    prt.add_argument("input", help="Path to input.json holding the tax lines")
    prt.set_defaults(func=cmd_orders_restore_tax)

    psn = so.add_parser("shipping-note", help="Set or clear the shipping-note metafield")
    psn.add_argument("order", help="Order GID, numeric id, or name (#1001)")
    g = psn.add_mutually_exclusive_group(required=True)
    g.add_argument("--note")
    g.add_argument("--clear", action="store_true")
    psn.set_defaults(func=cmd_orders_shipping_note)

    pinv = sp.add_parser("inventory", help="Inventory levels for a product variant")
    pinv.add_argument("variant", help="Variant GID or numeric id")
    pinv.set_defaults(func=cmd_inventory)

    ploc = sp.add_parser("locations", help="List locations")
    ploc.add_argument("--first", type=int, default=20)
    ploc.set_defaults(func=cmd_locations)

    pprod = sp.add_parser("products", help="Product operations")
    spp = pprod.add_subparsers(dest="prod_cmd", required=True)
    ppl = spp.add_parser("list", help="List products with their variants")
    ppl.add_argument("--first", type=int, default=10)
    ppl.add_argument("--query", help="Search query")
    ppl.set_defaults(func=cmd_products_list)
    ppc = spp.add_parser("create", help="Create a product")
    ppc.add_argument("--title", required=True)
    ppc.add_argument("--description-html")
    ppc.add_argument("--vendor")
    ppc.add_argument("--product-type")
    ppc.add_argument("--tags", help="Comma-separated tags")
    ppc.add_argument("--status", default="DRAFT", choices=["ACTIVE", "DRAFT", "ARCHIVED"])
    ppc.add_argument("--metafield", action="append", help="namespace.key=value (repeatable)")
    ppc.add_argument("--dry-run", action="store_true")
    ppc.set_defaults(func=cmd_products_create)

    pcus = sp.add_parser("customers", help="Customer address operations")
    sc = pcus.add_subparsers(dest="cus_cmd", required=True)
    pca = sc.add_parser("add-addresses", help="Add addresses from a JSON file to a customer")
    pca.add_argument("customer", help="Customer GID, numeric id, or search query (e.g. email:jane@example.com)")
    pca.add_argument("file", help="JSON list of MailingAddressInput objects")
    pca.add_argument("--set-default", action="store_true", help="Make the first added address the default")
    pca.set_defaults(func=cmd_customers_add_addresses)
    psd = sc.add_parser("set-default-address", help="Make an address its customer's default")
    psd.add_argument("address", help="MailingAddress GID or numeric id")
    psd.add_argument("--customer", help="Owning customer (skips the owner search)")
    psd.set_defaults(func=cmd_customers_set_default_address)
    pud = sc.add_parser("unset-default-address", help="Move the default away from an address")
    pud.add_argument("address", help="MailingAddress GID or numeric id")
    pud.add_argument("--customer", help="Owning customer (skips the owner search)")
    pud.set_defaults(func=cmd_customers_unset_default_address)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        load_env_files(args.env)
        client = None
        if not getattr(args, "dry_run", False):
            client = ShopifyClient(ShopifyConfig.from_env())
        return args.func(client, args)
    except KeyboardInterrupt:
        return 130
    except SystemExit as e:
        raise e
    except ShopifyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.debug("Unhandled error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
