"""Outbound webhook gateway.

All outbound HTTP calls for webhooks go through WebhookGateway; services
never call ``requests`` directly.

  - one POST per delivery, JSON body, caller-imposed timeout
  - no retries: a timeout or non-2xx is reported back, the service logs it
  - HMAC-SHA256 over the exact body bytes when the subscription has a secret:

        X-Taskboard-Event:     card_moved
        X-Taskboard-Delivery:  <uuid4>
        X-Taskboard-Signature: sha256=<hex digest>

Testability: pass a fake ``session`` to WebhookGateway() (or swap
``webhook_gateway.session``) instead of making real network requests.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 5
_USER_AGENT = "Taskboard-Webhooks/1.0"
_BODY_LIMIT = 2000


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def encode_body(payload: dict) -> bytes:
    return json.dumps(payload, sort_keys=True, default=str).encode("utf-8")


class DeliveryResult:
    """Outcome of one POST. ``ok`` is True only for an HTTP 2xx answer."""

    def __init__(self, ok, status_code, body, error, duration_ms, signature=None, delivery_id=None):
        self.ok = ok
        self.status_code = status_code
        self.body = body
        self.error = error
        self.duration_ms = duration_ms
        self.signature = signature
        self.delivery_id = delivery_id

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class WebhookGateway:
    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @session.setter
    def session(self, value) -> None:
        self._session = value

    def post(
        self,
        url: str,
        event_type: str,
        payload: dict,
        *,
        secret: str | None = None,
        headers: dict | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> DeliveryResult:
        """Deliver payload to url. Never raises for transport errors; check ``.ok``."""
        body = encode_body(payload)
        delivery_id = uuid.uuid4().hex
        signature = sign(secret, body) if secret else None
        request_headers = {
            **(headers or {}),
            "Content-Type": "application/json",
            "User-Agent": _USER_AGENT,
            "X-Taskboard-Event": event_type,
            "X-Taskboard-Delivery": delivery_id,
        }
        if signature:
            request_headers["X-Taskboard-Signature"] = signature

        t0 = time.perf_counter()
        try:
            resp = self.session.post(url, data=body, headers=request_headers, timeout=timeout)
        except requests.Timeout:
            logger.warning("Webhook timed out after %ss url=%s event=%s", timeout, url, event_type)
            return DeliveryResult(False, None, "", f"Request timed out after {timeout}s",
                                  int(timeout * 1000), signature, delivery_id)
        except requests.RequestException as exc:
            logger.warning("Webhook network error url=%s event=%s error=%s", url, event_type, exc)
            return DeliveryResult(False, None, "", str(exc)[:500],
                                  int((time.perf_counter() - t0) * 1000), signature, delivery_id)

        duration_ms = int((time.perf_counter() - t0) * 1000)
        text = (resp.text or "")[:_BODY_LIMIT]
        if 200 <= resp.status_code < 300:
            return DeliveryResult(True, resp.status_code, text, None, duration_ms, signature, delivery_id)
        logger.warning("Webhook rejected status=%d url=%s event=%s", resp.status_code, url, event_type)
        return DeliveryResult(False, resp.status_code, text, f"HTTP {resp.status_code}",
                              duration_ms, signature, delivery_id)


webhook_gateway = WebhookGateway()
