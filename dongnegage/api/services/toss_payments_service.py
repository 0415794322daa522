"""
Toss Payments integration
=========================
Confirms card payments after the customer returns from the checkout widget.
"""

import base64
import logging
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from dongnegage.core.config import config

logger = logging.getLogger(__name__)


class TossPaymentsError(Exception):
    """Confirmation rejected by Toss or the API was unreachable"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


class TossPaymentsService:
    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None):
        self.secret_key = secret_key or config.TOSS_SECRET_KEY
        self.base_url = (base_url or config.TOSS_API_URL).rstrip("/")

        if not self.secret_key:
            raise ValueError("TOSS_SECRET_KEY is not configured")

        encoded_credentials = base64.b64encode(f"{self.secret_key}:".encode("utf-8")).decode("utf-8")

        self.session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

        self.session.headers.update({
            "Authorization": f"Basic {encoded_credentials}",
            "Content-Type": "application/json",
            "Accept": "application/json"
        })

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None,
                      idempotency_key: Optional[str] = None) -> Dict:
        url = f"{self.base_url}{endpoint}"
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}

        logger.info(f"📤 [Toss] {method} {url}")

        try:
            response = self.session.request(method=method, url=url, json=data, headers=headers, timeout=30)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ [Toss] Connection error: {e}")
            raise TossPaymentsError(f"Toss connection error: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}

        logger.info(f"📥 [Toss] Status: {response.status_code}")

        if response.status_code >= 400:
            message = body.get("message", "Unknown error")
            logger.error(f"❌ [Toss] {response.status_code} {body.get('code')}: {message}")
            raise TossPaymentsError(message, status_code=response.status_code, payload=body)

        return body

    def confirm_payment(self, payment_key: str, order_id: str, amount: int) -> Dict:
        """POST /payments/confirm; the order id doubles as idempotency key."""
        return self._make_request(
            "POST",
            "/payments/confirm",
            data={"paymentKey": payment_key, "orderId": order_id, "amount": amount},
            idempotency_key=order_id,
        )


def get_toss_service() -> TossPaymentsService:
    return TossPaymentsService()
