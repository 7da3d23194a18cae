"""
Stripe Connect Service
Express accounts for photographers and partners, onboarding links and payout transfers.
Talks to the Stripe REST API directly (form encoded), the same way the other
provider clients here use httpx.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from ..circuit_breaker import with_circuit_breaker
from ..config import APP_URL, STRIPE_SECRET_KEY
from ..models import Staff

logger = logging.getLogger(__name__)

STRIPE_API_URL = "https://api.stripe.com/v1"
PRODUCT_DESCRIPTION = "Real estate photography and media services"


class StripeError(Exception):
    def __init__(self, message: str, status_code: int = 0, param: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.param = param


def encode_form(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into Stripe's bracket notation (a[b][c]=v)"""
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, dict):
                    pairs.extend(encode_form(item, f"{name}[{i}]"))
                else:
                    pairs.append((f"{name}[{i}]", str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


def account_status_from(account: dict) -> str:
    """not_started | pending | active | rejected | restricted"""
    requirements = account.get("requirements") or {}
    disabled_reason = requirements.get("disabled_reason")
    if account.get("charges_enabled") and account.get("payouts_enabled"):
        return "active"
    if disabled_reason:
        return "rejected" if "rejected" in disabled_reason else "restricted"
    if account.get("details_submitted"):
        return "pending"
    return "not_started"


class StripeConnectService:
    def __init__(self, secret_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.secret_key = secret_key if secret_key is not None else (STRIPE_SECRET_KEY or "")
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        if not self.is_configured():
            raise StripeError("Stripe is not configured")

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        async def call():
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{STRIPE_API_URL}{path}",
                    data=dict(encode_form(data)) if data else None,
                    params=params,
                    headers=headers,
                )
            body = response.json() if response.content else {}
            if not response.is_success:
                error = body.get("error") or {}
                raise StripeError(
                    error.get("message") or f"Stripe API error: {response.status_code}",
                    response.status_code,
                    error.get("param"),
                )
            return body

        return await with_circuit_breaker("stripe", call, timeout=15.0)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _onboarding_urls(self, entity_type: str, entity_id: str) -> dict:
        query = f"type={entity_type}&id={entity_id}"
        return {
            "refresh_url": f"{APP_URL}/api/connect/refresh?{query}",
            "return_url": f"{APP_URL}/api/connect/return?{query}",
        }

    async def create_connect_account(
        self,
        db: Session,
        staff: Staff,
        entity_type: str = "staff",
        business_type: str = "individual",
    ) -> dict:
        """
        Create an Express account and return its first onboarding link.

        Returns:
            {success, accountId, onboardingUrl} or {success: False, error}
        """
        try:
            account = await self._request(
                "POST",
                "/accounts",
                {
                    "type": "express",
                    "country": "US",
                    "email": staff.email,
                    "capabilities": {"transfers": {"requested": True}},
                    "business_type": business_type,
                    "business_profile": {"name": staff.name, "product_description": PRODUCT_DESCRIPTION},
                    "metadata": {"entity_type": entity_type, "entity_id": staff.id},
                },
            )
            link = await self._request(
                "POST",
                "/account_links",
                {"account": account["id"], "type": "account_onboarding", **self._onboarding_urls(entity_type, staff.id)},
            )
        except StripeError as e:
            logger.error(f"❌ Stripe Connect account creation failed for {staff.id}: {e}")
            details = f" (param: {e.param})" if e.param else ""
            return {"success": False, "error": f"{e}{details}"}

        staff.stripe_connect_id = account["id"]
        staff.stripe_connect_status = "pending"
        db.commit()
        logger.info(f"✅ Stripe Connect account {account['id']} created for staff {staff.id}")
        return {"success": True, "accountId": account["id"], "onboardingUrl": link.get("url")}

    async def generate_onboarding_link(self, account_id: str, entity_id: str, entity_type: str = "staff") -> dict:
        try:
            link = await self._request(
                "POST",
                "/account_links",
                {"account": account_id, "type": "account_onboarding", **self._onboarding_urls(entity_type, entity_id)},
            )
        except StripeError as e:
            return {"success": False, "error": str(e) or "Failed to generate onboarding link"}
        return {"success": True, "onboardingUrl": link.get("url")}

    async def get_account_status(self, account_id: str) -> Optional[dict]:
        try:
            account = await self._request("GET", f"/accounts/{account_id}")
        except StripeError as e:
            logger.error(f"❌ Failed to fetch Stripe account {account_id}: {e}")
            return None

        requirements = account.get("requirements") or {}
        return {
            "accountId": account.get("id"),
            "chargesEnabled": bool(account.get("charges_enabled")),
            "payoutsEnabled": bool(account.get("payouts_enabled")),
            "detailsSubmitted": bool(account.get("details_submitted")),
            "requirements": {
                "currentlyDue": requirements.get("currently_due") or [],
                "eventuallyDue": requirements.get("eventually_due") or [],
                "pastDue": requirements.get("past_due") or [],
                "pendingVerification": requirements.get("pending_verification") or [],
            },
            "status": account_status_from(account),
        }

    async def sync_account_status(self, db: Session, staff: Staff) -> bool:
        if not staff.stripe_connect_id:
            return False
        info = await self.get_account_status(staff.stripe_connect_id)
        if not info:
            return False
        staff.stripe_connect_status = info["status"]
        staff.stripe_payouts_enabled = info["payoutsEnabled"]
        db.commit()
        logger.info(f"🔄 Staff {staff.id} Stripe status -> {info['status']}")
        return True

    async def create_login_link(self, account_id: str) -> Optional[str]:
        try:
            link = await self._request("POST", f"/accounts/{account_id}/login_links")
        except StripeError as e:
            logger.error(f"❌ Failed to create Stripe login link for {account_id}: {e}")
            return None
        return link.get("url")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def create_transfer(
        self,
        amount_cents: int,
        destination_account_id: str,
        order_id: str,
        staff_id: Optional[str] = None,
        partner_id: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        key = idempotency_key or f"transfer_{order_id}_{destination_account_id}_{int(time.time() * 1000)}"
        try:
            transfer = await self._request(
                "POST",
                "/transfers",
                {
                    "amount": amount_cents,
                    "currency": "usd",
                    "destination": destination_account_id,
                    "description": description or f"Payout for order {order_id}",
                    "metadata": {"order_id": order_id, "staff_id": staff_id or "", "partner_id": partner_id or ""},
                },
                idempotency_key=key,
            )
        except StripeError as e:
            logger.error(f"❌ Transfer for order {order_id} failed: {e}")
            return {"success": False, "error": str(e) or "Failed to create transfer"}

        logger.info(f"💸 Transfer {transfer['id']} of {amount_cents}c to {destination_account_id}")
        return {"success": True, "transferId": transfer["id"]}

    async def get_transfers_for_order(self, order_id: str) -> list[dict]:
        try:
            result = await self._request("GET", "/transfers", params={"limit": 100})
        except StripeError as e:
            logger.error(f"❌ Failed to list transfers: {e}")
            return []
        return [t for t in result.get("data", []) if (t.get("metadata") or {}).get("order_id") == order_id]

    async def get_balance(self) -> Optional[dict]:
        try:
            balance = await self._request("GET", "/balance")
        except StripeError as e:
            logger.error(f"❌ Failed to fetch Stripe balance: {e}")
            return None

        def usd(entries: list[dict]) -> int:
            return next((b.get("amount", 0) for b in entries if b.get("currency") == "usd"), 0)

        return {"available": usd(balance.get("available", [])), "pending": usd(balance.get("pending", []))}

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def create_payment_intent(self, amount_cents: int, metadata: dict[str, Any], description: str) -> dict:
        """Card payment for an invoice; the client confirms it with the returned client secret"""
        return await self._request(
            "POST",
            "/payment_intents",
            {
                "amount": amount_cents,
                "currency": "usd",
                "description": description,
                "metadata": metadata,
                "automatic_payment_methods": {"enabled": True},
            },
        )


def apply_account_updated(db: Session, account: dict) -> Optional[Staff]:
    """Handle an account.updated Connect event"""
    staff = db.query(Staff).filter(Staff.stripe_connect_id == account.get("id")).first()
    if not staff:
        return None
    staff.stripe_connect_status = account_status_from(account)
    staff.stripe_payouts_enabled = bool(account.get("payouts_enabled"))
    db.commit()
    logger.info(
        f"🔄 Stripe account {account.get('id')} updated at {datetime.now(timezone.utc).isoformat()}: "
        f"{staff.stripe_connect_status}"
    )
    return staff


_stripe_connect_service: Optional[StripeConnectService] = None


def get_stripe_connect_service() -> StripeConnectService:
    global _stripe_connect_service
    if _stripe_connect_service is None:
        _stripe_connect_service = StripeConnectService()
    return _stripe_connect_service
