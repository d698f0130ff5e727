#!/usr/bin/env python3
"""
Thin Shopify Admin API client (GraphQL + REST) and the error taxonomy
shared by every command.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

REDIRECT_CODES = (301, 302, 303, 307, 308)


class ShopifyError(Exception):
    """Base class for every failure the CLI reports."""
    pass


class ConfigError(ShopifyError):
    """Missing or invalid configuration; raised before any network call."""
    pass


class InputError(ShopifyError):
    """Unreadable or malformed local input file."""
    pass


class TransportError(ShopifyError):
    """Connection failure, timeout, or non-success HTTP status."""
    pass


class RemoteError(ShopifyError):
    """GraphQL errors or mutation userErrors returned by Shopify."""
    pass


class ResponseShapeError(ShopifyError):
    """A field we rely on is missing from a decoded response."""
    pass


def format_user_errors(errors: Iterable[Dict[str, Any]]) -> str:
    parts = []
    for e in errors:
        field = e.get("field")
        if isinstance(field, list):
            field = ".".join(str(f) for f in field)
        msg = e.get("message") or json.dumps(e)
        parts.append(f"{field}: {msg}" if field else msg)
    return "; ".join(parts)


def raise_for_user_errors(payload: Optional[Dict[str, Any]], operation: str) -> None:
    errors = (payload or {}).get("userErrors") or []
    if errors:
        raise RemoteError(f"{operation} failed. User errors: {format_user_errors(errors)}")


class ShopifyClient:
    """Client for one shop's Admin API."""

    def __init__(self, config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Shopify-Access-Token": config.token,
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    def _send(self, method: str, url: str, payload: Optional[dict] = None, params: Optional[dict] = None):
        timeout = self.config.timeout
        try:
            r = self.session.request(
                method=method,
                url=url,
                json=payload,
                params=params,
                timeout=timeout,
                allow_redirects=False,
            )
            # Shopify answers with a redirect to the canonical shop domain; re-send the body there
            if r.status_code in REDIRECT_CODES:
                loc = r.headers.get("Location")
                if loc:
                    logging.debug("Following %s redirect to %s", r.status_code, loc)
                    r = self.session.request(
                        method=method,
                        url=loc,
                        json=payload,
                        params=params,
                        timeout=timeout,
                        allow_redirects=False,
                    )
        except requests.exceptions.Timeout:
            raise TransportError(f"Timed out after {timeout:g}s: {method} {url}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Network error: {e}")
        return r

    @staticmethod
    def _decode(r) -> Dict[str, Any]:
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError:
            raise ResponseShapeError(f"Expected JSON from Shopify, got: {r.text[:200]}")

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a query/mutation and return its `data` object."""
        body = {"query": query, "variables": variables or {}}
        logging.debug("GraphQL variables: %s", json.dumps(variables or {}))
        r = self._send("POST", self.config.graphql_url, payload=body)
        if not r.ok:
            raise TransportError(f"HTTP {r.status_code}: {r.text[:400]}")
        resp = self._decode(r)
        errors = resp.get("errors")
        if errors:
            if isinstance(errors, list):
                msg = "; ".join(e.get("message", json.dumps(e)) if isinstance(e, dict) else str(e) for e in errors)
            else:
                msg = json.dumps(errors)
            raise RemoteError(f"GraphQL errors: {msg}")
        data = resp.get("data")
        if not isinstance(data, dict):
            raise ResponseShapeError("GraphQL response has no data object")
        return data

    def rest(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        params: Optional[dict] = None,
        ok_status: Iterable[int] = (200, 201),
    ) -> Dict[str, Any]:
        """Call a REST endpoint relative to /admin/api/{version}/."""
        url = self.config.rest_url(path)
        if payload is not None:
            logging.debug("REST %s %s body: %s", method, path, json.dumps(payload))
        r = self._send(method, url, payload=payload, params=params)
        if r.status_code not in tuple(ok_status):
            raise TransportError(f"HTTP {r.status_code} from {method} {path}: {r.text[:400]}")
        return self._decode(r)

    def mutate(self, mutation: str, variables: Dict[str, Any], root: str) -> Dict[str, Any]:
        """Run a mutation and return its root payload after checking userErrors."""
        data = self.graphql(mutation, variables)
        payload = data.get(root)
        if not isinstance(payload, dict):
            raise ResponseShapeError(f"{root} missing from mutation response")
        raise_for_user_errors(payload, root)
        return payload


def edges(conn: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [(e or {}).get("node") or {} for e in (conn or {}).get("edges", [])]
