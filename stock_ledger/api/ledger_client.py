"""Client for a remote stock ledger API."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from .base_client import BaseClient
from ..middleware.identity import (
    CALLER_ID_HEADER,
    CALLER_NAME_HEADER,
    CALLER_SIGNATURE_HEADER,
    sign_identity,
)
from ..models.identity import CallerIdentity
from ..models.movement import Movement, MovementFilter, MovementInput
from ..models.product import Product
from ..utils.config import get_config
from ..utils.exceptions import ERRORS_BY_CODE, LedgerAPIError, PersistenceError
from ..utils.timestamps import isoformat


def _jsonable(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: str(value) if isinstance(value, Decimal) else value for key, value in data.items()}


def movement_payload(movement_input: MovementInput) -> Dict[str, Any]:
    """Request body for ``POST /movements``."""
    movement_type = getattr(movement_input.type, "value", movement_input.type)
    payload: Dict[str, Any] = {
        "product_id": movement_input.product_id,
        "type": movement_type,
        "quantity": movement_input.quantity,
    }
    if movement_input.occurred_at is not None:
        payload["occurred_at"] = isoformat(movement_input.occurred_at)
    if not movement_input.supplier.is_empty():
        payload["supplier"] = movement_input.supplier.to_dict()
    if not movement_input.customer.is_empty():
        payload["customer"] = movement_input.customer.to_dict()
    if movement_input.reason:
        payload["reason"] = movement_input.reason
    return payload


def filter_params(movement_filter: Optional[MovementFilter]) -> Dict[str, str]:
    if movement_filter is None:
        return {}
    params = {}
    if movement_filter.start is not None:
        params["start"] = isoformat(movement_filter.start)
    if movement_filter.end is not None:
        params["end"] = isoformat(movement_filter.end)
    if movement_filter.category:
        params["category"] = movement_filter.category
    return params


class LedgerClient(BaseClient):
    """Signed client for the stock ledger HTTP API.

    Error responses are raised as the same typed exceptions the ledger
    raises in-process.
    """

    def __init__(
        self,
        base_url: str,
        caller: CallerIdentity,
        secret: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize ledger client.

        Args:
            base_url: Ledger API root, e.g. ``http://localhost:8000``
            caller: Identity to act as
            secret: Identity signing secret (defaults to ``IDENTITY_SECRET``)
            transport: Optional httpx transport
        """
        self.caller = caller
        secret = secret or get_config().env.identity_secret
        headers = {
            CALLER_ID_HEADER: caller.id,
            CALLER_NAME_HEADER: caller.name,
            CALLER_SIGNATURE_HEADER: sign_identity(caller.id, caller.name, secret),
        }
        super().__init__(base_url=base_url, headers=headers, transport=transport)

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def _check(self, response: httpx.Response) -> Any:
        """Return the decoded body or raise the matching typed error."""
        if response.status_code < 400:
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}

        code = body.get("error") if isinstance(body, dict) else None
        message = body.get("message", response.text) if isinstance(body, dict) else response.text
        details = body.get("details", {}) if isinstance(body, dict) else {}

        error_class = ERRORS_BY_CODE.get(code)
        if error_class is not None:
            raise error_class(message, details=details)

        raise LedgerAPIError(
            f"Ledger API error (HTTP {response.status_code}): {message}",
            details={"status_code": response.status_code, "response": response.text},
            status_code=response.status_code
        )

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, data: Dict[str, Any]) -> Product:
        body = self._check(self.post("/products", json=_jsonable(data)))
        return Product.from_dict(body)

    def get_product(self, product_id: str) -> Product:
        return Product.from_dict(self._check(self.get(f"/products/{product_id}")))

    def list_products(self, category: Optional[str] = None, search: Optional[str] = None) -> List[Product]:
        params = {key: value for key, value in (("category", category), ("search", search)) if value}
        body = self._check(self.get("/products", params=params))
        return [Product.from_dict(item) for item in body["products"]]

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        body = self._check(self.patch(f"/products/{product_id}", json=_jsonable(changes)))
        return Product.from_dict(body)

    def delete_product(self, product_id: str) -> None:
        self._check(self.delete(f"/products/{product_id}"))

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def record_movement(self, movement_input: MovementInput, retry_on_conflict: bool = False) -> Movement:
        """
        Record a movement remotely.

        Args:
            movement_input: Movement to record
            retry_on_conflict: Retry ``PersistenceFailure`` / ``ConcurrentUpdate``
                responses up to ``api.conflict_retries`` times

        Raises:
            The typed ledger error returned by the server
        """
        payload = movement_payload(movement_input)

        def _record() -> Movement:
            body = self._check(self.post("/movements", json=payload))
            return Movement.from_dict(body, owner_id=self.caller.id)

        if not retry_on_conflict:
            return _record()

        for attempt in Retrying(
            stop=stop_after_attempt(self.config.api.conflict_retries),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(PersistenceError),
            reraise=True
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self.logger.warning(
                        f"Retrying movement for {movement_input.product_id} "
                        f"(attempt {attempt.retry_state.attempt_number})"
                    )
                return _record()

    def list_movements(self, movement_filter: Optional[MovementFilter] = None) -> List[Movement]:
        body = self._check(self.get("/movements", params=filter_params(movement_filter)))
        return [Movement.from_dict(item, owner_id=self.caller.id) for item in body["movements"]]

    def get_valuation(self, movement_filter: Optional[MovementFilter] = None, days: Optional[int] = None) -> Dict[str, Any]:
        params = filter_params(movement_filter)
        if days is not None:
            params["days"] = str(days)
        return self._check(self.get("/valuation", params=params))

    def run_audit(self) -> Dict[str, Any]:
        return self._check(self.get("/audit"))
