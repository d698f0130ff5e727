#!/usr/bin/env python3
"""Customer lookup and address bookkeeping (add, set default, unset default)."""

import logging
from typing import Any, Dict, List, Optional

from shopify_client import ShopifyError, edges

CUSTOMER_GID_PREFIX = "gid://shopify/Customer/"
ADDRESS_GID_PREFIX = "gid://shopify/MailingAddress/"

CUSTOMER_SEARCH = """
query customerSearch($query: String!) {
  customers(first: 1, query: $query) {
    edges { node { id displayName email } }
  }
}
"""

CUSTOMER_ADDRESSES = """
query customerAddresses($id: ID!) {
  customer(id: $id) {
    id
    displayName
    defaultAddress { id }
    addresses(first: 50) { id address1 city zip country }
  }
}
"""

CUSTOMERS_PAGE = """
query customersPage($after: String) {
  customers(first: 50, after: $after) {
    edges { node { id addresses(first: 50) { id } } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

ADDRESS_CREATE = """
mutation customerAddressCreate($customerId: ID!, $address: MailingAddressInput!, $setAsDefault: Boolean) {
  customerAddressCreate(customerId: $customerId, address: $address, setAsDefault: $setAsDefault) {
    address { id address1 city }
    userErrors { field message }
  }
}
"""

SET_DEFAULT_ADDRESS = """
mutation customerUpdateDefaultAddress($customerId: ID!, $addressId: ID!) {
  customerUpdateDefaultAddress(customerId: $customerId, addressId: $addressId) {
    customer { id defaultAddress { id address1 city } }
    userErrors { field message }
  }
}
"""

ADDRESS_FIELDS = ("firstName", "lastName", "company", "address1", "address2", "city", "province", "provinceCode", "country", "countryCode", "zip", "phone")


def _address_number(address_id: str) -> str:
    return str(address_id).split("?", 1)[0].rsplit("/", 1)[-1]


def address_gid(address_id: str) -> str:
    """Customer addresses are MailingAddress GIDs tagged with their model name."""
    return f"{ADDRESS_GID_PREFIX}{_address_number(address_id)}?model_name=CustomerAddress"


def same_address(a: str, b: str) -> bool:
    return _address_number(a) == _address_number(b)


def mailing_address_input(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {k: raw[k] for k in ADDRESS_FIELDS if raw.get(k)}


def resolve_customer_id(client, ref: str) -> str:
    """GID, numeric id, or a customers search query (email, name)."""
    ref = ref.strip()
    if ref.startswith("gid://"):
        return ref
    if ref.isdigit():
        return f"{CUSTOMER_GID_PREFIX}{ref}"
    data = client.graphql(CUSTOMER_SEARCH, {"query": ref})
    found = edges(data.get("customers"))
    if not found:
        raise ShopifyError(f"No customer matches {ref!r}")
    logging.info("Resolved customer %r to %s", ref, found[0]["id"])
    return found[0]["id"]


def get_addresses(client, customer_id: str) -> Dict[str, Any]:
    data = client.graphql(CUSTOMER_ADDRESSES, {"id": customer_id})
    customer = data.get("customer")
    if not customer:
        raise ShopifyError(f"Customer {customer_id} not found")
    return customer


def find_address_owner(client, address_id: str, max_pages: int = 20) -> str:
    """Scan customers page by page for the one owning address_id."""
    after: Optional[str] = None
    for _ in range(max_pages):
        data = client.graphql(CUSTOMERS_PAGE, {"after": after})
        conn = data.get("customers") or {}
        for node in edges(conn):
            for addr in node.get("addresses") or []:
                if same_address(addr.get("id", ""), address_id):
                    return node["id"]
        if not conn.get("pageInfo", {}).get("hasNextPage"):
            break
        after = conn.get("pageInfo", {}).get("endCursor")
        if not after:
            break
    raise ShopifyError(f"No customer owns address {address_id}")


def add_addresses(client, customer_id: str, addresses: List[Dict[str, Any]], set_default: bool = False) -> List[Dict[str, Any]]:
    created = []
    for i, raw in enumerate(addresses):
        payload = client.mutate(ADDRESS_CREATE, {
            "customerId": customer_id,
            "address": mailing_address_input(raw),
            "setAsDefault": bool(set_default and i == 0),
        }, "customerAddressCreate")
        addr = payload.get("address") or {}
        logging.info("Added address %s (%s)", addr.get("id"), addr.get("address1"))
        created.append(addr)
    return created


def set_default_address(client, address_id: str, customer_id: Optional[str] = None) -> Dict[str, Any]:
    customer_id = customer_id or find_address_owner(client, address_id)
    payload = client.mutate(SET_DEFAULT_ADDRESS, {
        "customerId": customer_id,
        "addressId": address_gid(address_id),
    }, "customerUpdateDefaultAddress")
    return payload.get("customer") or {}


def unset_default_address(client, address_id: str, customer_id: Optional[str] = None) -> Dict[str, Any]:
    """Shopify has no 'no default' state; move the default to another address."""
    customer_id = customer_id or find_address_owner(client, address_id)
    customer = get_addresses(client, customer_id)
    default_id = (customer.get("defaultAddress") or {}).get("id", "")
    if default_id and not same_address(default_id, address_id):
        logging.info("Address %s is not the default; nothing to change", address_id)
        return customer
    others = [a for a in customer.get("addresses") or [] if not same_address(a.get("id", ""), address_id)]
    if not others:
        raise ShopifyError(f"Address {address_id} is the customer's only address; add another before unsetting it")
    return set_default_address(client, others[0]["id"], customer_id)
