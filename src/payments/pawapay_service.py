from typing import Any, Dict, Optional
from datetime import datetime, timezone
from decimal import Decimal
from pydantic import BaseModel
import logging
import uuid
import httpx

from src.config import settings
from src.exceptions import InsufficientFunds, PaymentProviderError

logger = logging.getLogger(__name__)

MOCK_DEPOSIT_PREFIX = "MOCK-"

class DepositResult(BaseModel):
    """Provider response to a deposit (collection) request"""
    deposit_id: str
    status: str
    redirect_url: Optional[str] = None

def format_amount(amount_minor: int) -> str:
    """Minor currency units as the provider's decimal string, e.g. 1250 -> "12.50" """
    return str((Decimal(int(amount_minor)) / Decimal(100)).quantize(Decimal("0.01")))

class PawaPayClient:
    """HTTP adapter for the PawaPay mobile-money deposits API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        environment: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = (base_url or settings.PAWAPAY_API_URL).rstrip("/")
        self.token = settings.PAWAPAY_API_TOKEN if token is None else token
        self.timeout = timeout or settings.PAWAPAY_TIMEOUT_SECONDS
        self.environment = environment or settings.ENVIRONMENT
        self._transport = transport

    @property
    def mock_mode(self) -> bool:
        """No credentials outside production: deposits are simulated"""
        return not self.token and self.environment != "production"

    def initiate_deposit(
        self,
        amount_minor: int,
        currency: str,
        phone_number: str,
        correspondent: str,
        description: str,
        order_id: str,
        country: Optional[str] = None
    ) -> DepositResult:
        """Ask the payer's wallet provider to collect the amount"""

        if self.mock_mode:
            logger.warning("No PawaPay token configured, simulating deposit for order %s", order_id)
            return DepositResult(deposit_id=f"{MOCK_DEPOSIT_PREFIX}{uuid.uuid4()}", status="PENDING")

        payload = {
            "depositId": str(uuid.uuid4()),
            "amount": format_amount(amount_minor),
            "currency": currency,
            "correspondent": correspondent,
            "payer": {
                "type": "MSISDN",
                "address": {"value": phone_number}
            },
            "customerTimestamp": datetime.now(timezone.utc).isoformat(),
            "statementDescription": description[:20],
            "metadata": [
                {"fieldName": "orderId", "fieldValue": order_id}
            ]
        }
        if country:
            payload["country"] = country

        data = self._request("POST", "/deposits", json=payload)

        status = data.get("status", "")
        if status == "REJECTED":
            rejection = data.get("rejectionReason") or {}
            code = rejection.get("rejectionCode", "")
            message = rejection.get("rejectionMessage") or "Payment request rejected by provider"
            if "INSUFFICIENT" in code.upper():
                raise InsufficientFunds(message, details={"rejection_code": code})
            raise PaymentProviderError(message, details={"rejection_code": code})

        return DepositResult(
            deposit_id=data.get("depositId", payload["depositId"]),
            status=status,
            redirect_url=data.get("redirectUrl")
        )

    def check_status(self, deposit_id: str) -> str:
        """Current deposit status: COMPLETED, FAILED, SUBMITTED, ..."""
        if deposit_id.startswith(MOCK_DEPOSIT_PREFIX):
            return "COMPLETED"

        data = self._request("GET", f"/deposits/{deposit_id}")
        # The deposits endpoint answers with a list of matching deposits
        if isinstance(data, list):
            if not data:
                raise PaymentProviderError(f"Deposit {deposit_id} not found at provider")
            data = data[0]
        return data.get("status", "")

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport
            ) as client:
                response = client.request(method, path, headers=headers, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            detail = self._error_detail(e.response)
            logger.error("PawaPay %s %s failed: %s %s", method, path, e.response.status_code, detail)
            raise PaymentProviderError(
                detail or "Payment provider request failed",
                details={"status_code": e.response.status_code}
            ) from e
        except httpx.HTTPError as e:
            logger.error("PawaPay %s %s failed: %s", method, path, e)
            raise PaymentProviderError("Payment provider unreachable") from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body: Dict[str, Any] = response.json()
        except ValueError:
            return response.text or ""
        if isinstance(body, dict):
            return str(body.get("message") or body.get("errorMessage") or "")
        return ""
