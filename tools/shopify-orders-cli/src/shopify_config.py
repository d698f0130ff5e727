#!/usr/bin/env python3
"""Process-wide Shopify settings, read from the environment exactly once."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from shopify_client import ConfigError

TOOL_DIR = Path(__file__).parent.parent
DEFAULT_API_VERSION = "2025-10"


def load_env_files(path: Optional[str] = None) -> None:
    """Load KEY=VALUE files into os.environ without clobbering real env vars.

    Order: explicit --env path (or the tool's .env, then ./.env), followed by
    the shared ~/AGENTS.env used by the other CLIs.
    """
    if path:
        load_dotenv(os.path.expanduser(path), override=False)
    else:
        load_dotenv(TOOL_DIR / ".env", override=False)
        load_dotenv(Path.cwd() / ".env", override=False)
    agents_env = os.environ.get("AGENTS_ENV_PATH", os.path.expanduser("~/AGENTS.env"))
    if os.path.exists(agents_env):
        load_dotenv(agents_env, override=False)


def _first(env: Mapping[str, str], *keys: str) -> str:
    for k in keys:
        v = (env.get(k) or "").strip()
        if v:
            return v
    return ""


@dataclass(frozen=True)
class ShopifyConfig:
    shop: str
    token: str
    api_version: str = DEFAULT_API_VERSION
    timeout: float = 30.0
    currency: str = "USD"
    note_namespace: str = "custom"
    note_key: str = "shipping_note"
    pickup_location_id: str = ""

    @property
    def base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    @property
    def graphql_url(self) -> str:
        return f"{self.base_url}/graphql.json"

    def rest_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def masked_token(self) -> str:
        if len(self.token) <= 8:
            return "*" * len(self.token)
        return f"{self.token[:4]}...{self.token[-4:]}"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ShopifyConfig":
        env = os.environ if env is None else env
        shop = _first(env, "SHOPIFY_SHOP_DOMAIN", "SHOPIFY_SHOP")
        token = _first(env, "SHOPIFY_ACCESS_TOKEN", "SHOPIFY_ADMIN_TOKEN", "SHOPIFY_API_SECRET")
        if not shop or not token:
            raise ConfigError(
                "Set SHOPIFY_SHOP_DOMAIN and SHOPIFY_ACCESS_TOKEN (or SHOPIFY_ADMIN_TOKEN) in .env or ~/AGENTS.env"
            )
        shop = shop.replace("https://", "").replace("http://", "").rstrip("/")
        timeout_raw = _first(env, "SHOPIFY_TIMEOUT") or "30"
        try:
            timeout = float(timeout_raw)
        except ValueError:
            raise ConfigError(f"SHOPIFY_TIMEOUT must be a number of seconds, got {timeout_raw!r}")
        if timeout <= 0:
            raise ConfigError("SHOPIFY_TIMEOUT must be positive")
        return cls(
            shop=shop,
            token=token,
            api_version=_first(env, "SHOPIFY_API_VERSION") or DEFAULT_API_VERSION,
            timeout=timeout,
            currency=_first(env, "SHOPIFY_CURRENCY") or "USD",
            note_namespace=_first(env, "SHOPIFY_NOTE_NAMESPACE") or "custom",
            note_key=_first(env, "SHOPIFY_NOTE_KEY") or "shipping_note",
            pickup_location_id=_first(env, "SHOPIFY_PICKUP_LOCATION_ID"),
        )
