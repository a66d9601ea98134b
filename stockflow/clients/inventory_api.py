import base64
import json
import logging
import re
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from urllib import error, request
from urllib.parse import urlencode, urlparse

from pydantic import ValidationError as PydanticValidationError

from stockflow.core.dates import utc_now
from stockflow.core.errors import (
    AuthError,
    InventoryApiError,
    RateLimitedError,
    TransientError,
)
from stockflow.core.rate_limiter import RateLimiter
from stockflow.schemas.inventory import ExternalRecord, ExternalVendor

logger = logging.getLogger(__name__)

_ALLOWED_HTTP_SCHEMES = {"http", "https"}
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_PAGE_LIST_KEYS = ("products", "items", "data", "results")


def normalize_account_path(account: str) -> str:
    """Accept a bare account name or a pasted account URL."""
    value = _SCHEME_RE.sub("", str(account or "").strip())
    host, _, rest = value.partition("/")
    if "." in host:
        value = rest
    value = re.sub(r"/api(/.*)?$", "", value.strip("/"))
    return value.split("/")[0].strip()


def _validate_base_url(base_url: str) -> str:
    parsed = urlparse(base_url)
    if parsed.scheme.lower() not in _ALLOWED_HTTP_SCHEMES or not parsed.netloc:
        raise InventoryApiError("INVENTORY_API_BASE_URL must be an absolute HTTP(S) URL")
    return base_url.rstrip("/")


def _parse_retry_after(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def rows_from_payload(payload, list_keys=_PAGE_LIST_KEYS) -> list[dict]:
    """Normalise the three response layouts the provider uses into row dicts.

    Plain JSON arrays, objects wrapping an array, and "parallel array"
    objects where every field maps to a list of column values.
    """
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]
    if not isinstance(payload, dict):
        return []
    for key in list_keys:
        value = payload.get(key)
        if isinstance(value, list) and all(isinstance(row, dict) for row in value):
            return value
    columns = {key: value for key, value in payload.items() if isinstance(value, list)}
    if not columns:
        return []
    length = max(len(value) for value in columns.values())
    rows = []
    for index in range(length):
        rows.append(
            {key: values[index] for key, values in columns.items() if index < len(values)}
        )
    return rows


@dataclass
class InventoryFilters:
    modified_since: Optional[datetime] = None
    active_only: bool = False

    def as_params(self) -> dict:
        params = {}
        if self.modified_since is not None:
            params["modifiedSince"] = self.modified_since.isoformat()
        if self.active_only:
            params["status"] = "PRODUCT_ACTIVE"
        return params


@dataclass
class RejectedRecord:
    sku: Optional[str]
    message: str


@dataclass
class InventoryPage:
    cursor: int
    records: list[ExternalRecord] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)
    next_cursor: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.records) + len(self.rejected)


class InventoryApiClient:
    """Typed wrapper around the external product, vendor and purchase-order endpoints.

    Every HTTP call is dispatched through the shared ``RateLimiter``.
    """

    def __init__(
        self,
        *,
        base_url: str,
        account: str,
        api_key: str,
        api_secret: str,
        rate_limiter: RateLimiter,
        timeout: int = 30,
        page_size: int = 100,
        urlopen: Callable = request.urlopen,
    ) -> None:
        if not api_key or not api_secret or not account:
            raise AuthError("Inventory API credentials are not configured")
        account_path = normalize_account_path(account)
        if not account_path:
            raise AuthError("Inventory API account path is empty")
        self._api_root = "{}/{}/api".format(_validate_base_url(base_url), account_path)
        token = base64.b64encode("{}:{}".format(api_key, api_secret).encode("utf-8")).decode("ascii")
        self._auth_header = "Basic {}".format(token)
        self._rate_limiter = rate_limiter
        self._timeout = timeout
        self._page_size = max(1, int(page_size))
        self._urlopen = urlopen

    @classmethod
    def from_settings(cls, settings, rate_limiter: RateLimiter) -> "InventoryApiClient":
        return cls(
            base_url=settings.INVENTORY_API_BASE_URL,
            account=(settings.INVENTORY_API_ACCOUNT or "").strip(),
            api_key=(settings.INVENTORY_API_KEY or "").strip(),
            api_secret=(settings.INVENTORY_API_SECRET or "").strip(),
            rate_limiter=rate_limiter,
            timeout=settings.INVENTORY_API_TIMEOUT_SECONDS,
            page_size=settings.INVENTORY_API_PAGE_SIZE,
        )

    @property
    def api_root(self) -> str:
        return self._api_root

    @property
    def page_size(self) -> int:
        return self._page_size

    def _build_request(self, method: str, path: str, params=None, body=None) -> request.Request:
        url = "{}/{}".format(self._api_root, path.lstrip("/"))
        if params:
            url = "{}?{}".format(url, urlencode(params))
        data = None
        headers = {
            "Accept": "application/json",
            "Authorization": self._auth_header,
        }
        if body is not None:
            data = json.dumps(body, default=str).encode("utf-8")
            headers["Content-Type"] = "application/json"
        return request.Request(url, data=data, method=method, headers=headers)

    def _send(self, req: request.Request):
        try:
            with self._urlopen(req, timeout=self._timeout) as response:  # nosec B310
                raw = response.read()
        except error.HTTPError as exc:
            self._raise_http_error(exc)
        except error.URLError as exc:
            raise TransientError("Inventory API unreachable: {}".format(exc.reason)) from exc
        except (socket.timeout, TimeoutError, ConnectionError) as exc:
            raise TransientError("Inventory API timeout: {}".format(exc)) from exc

        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise InventoryApiError("Inventory API returned malformed JSON") from exc

    @staticmethod
    def _raise_http_error(exc: error.HTTPError):
        body = ""
        try:
            body_bytes = exc.read()
            if body_bytes:
                body = body_bytes.decode("utf-8", errors="replace").strip()[:500]
        except (OSError, ValueError):
            body = ""
        message = "Inventory API error: HTTP {}".format(exc.code)
        if body:
            message = "{} {}".format(message, body)

        if exc.code in (401, 403):
            raise AuthError(message, status_code=exc.code) from exc
        if exc.code == 429:
            retry_after = _parse_retry_after(exc.headers.get("Retry-After") if exc.headers else None)
            raise RateLimitedError(message, retry_after=retry_after) from exc
        if exc.code >= 500 or exc.code == 408:
            raise TransientError(message, status_code=exc.code) from exc
        raise InventoryApiError(message, status_code=exc.code) from exc

    def _call(self, method: str, path: str, params=None, body=None):
        req = self._build_request(method, path, params=params, body=body)
        return self._rate_limiter.call(self._send, req)

    def test_connection(self) -> bool:
        try:
            self._call("GET", "product", params={"limit": 1})
        except InventoryApiError as exc:
            logger.warning("Inventory API connection test failed: %s", exc)
            return False
        return True

    def fetch_inventory_page(self, cursor: int = 0, filters: Optional[InventoryFilters] = None) -> InventoryPage:
        offset = max(0, int(cursor or 0))
        params = {"limit": self._page_size, "offset": offset}
        if filters is not None:
            params.update(filters.as_params())
        payload = self._call("GET", "product", params=params)
        rows = rows_from_payload(payload)

        page = InventoryPage(cursor=offset)
        for row in rows:
            try:
                page.records.append(ExternalRecord.model_validate(row))
            except PydanticValidationError as exc:
                sku = row.get("productSku") or row.get("sku") or row.get("productId")
                page.rejected.append(
                    RejectedRecord(
                        sku=str(sku) if sku is not None else None,
                        message="invalid record: {}".format(exc.errors()[0].get("msg", "validation failed")),
                    )
                )

        next_cursor = payload.get("nextCursor") if isinstance(payload, dict) else None
        if next_cursor is not None:
            page.next_cursor = int(next_cursor)
        elif len(rows) >= self._page_size:
            page.next_cursor = offset + len(rows)
        return page

    def fetch_vendors(self) -> list[ExternalVendor]:
        payload = self._call("GET", "vendors")
        vendors = []
        for row in rows_from_payload(payload, list_keys=("vendors", "parties", "data")):
            try:
                vendors.append(ExternalVendor.model_validate(row))
            except PydanticValidationError:
                logger.warning("Skipping malformed vendor row: %s", row.get("partyId") or row.get("vendorId"))
        return vendors

    def push_purchase_order(self, order: dict) -> dict:
        body = {
            "orderDate": order.get("order_date") or utc_now().isoformat(),
            "vendorName": order.get("vendor_name"),
            "vendorId": order.get("vendor_id"),
            "notes": order.get("notes"),
            "orderNumber": order.get("po_number"),
            "items": [
                {
                    "productSku": item.get("sku"),
                    "quantity": item.get("quantity", item.get("suggested_quantity")),
                    "unitCost": item.get("unit_cost"),
                }
                for item in order.get("items") or []
            ],
        }
        result = self._call("POST", "purchaseOrder", body=body)
        return result if isinstance(result, dict) else {}


__all__ = [
    "InventoryApiClient",
    "InventoryFilters",
    "InventoryPage",
    "RejectedRecord",
    "normalize_account_path",
    "rows_from_payload",
]
