"""
Credit Quota Gate for the Case Copilot

Checks and reserves metered credits before paid work. Balances come from an
external metering service and are cached per account for a short TTL;
concurrent callers for the same account share one in-flight fetch.

Reservations are local to the gate: a reserved amount is held back from
other checks, consumed only by ``commit`` after a successful generation,
and returned by ``release`` on fallback or rejection.
"""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol

import requests

from .errors import QuotaExceededError
from .language_patterns import PIPELINE_LABELS, get_labels
from .models import create_id

logger = logging.getLogger(__name__)


# Pools per credit kind, in consumption priority order
CREDIT_POOLS = {
    "ai": ("extra_ai_credits_5m", "extra_ai_credits_20m"),
    "pages": ("extra_pages",),
}


@dataclass
class CreditBalance:
    """Balance of one purchased add-on pool."""
    addon_type: str
    current_balance: int
    total_purchased: int = 0
    total_consumed: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "CreditBalance":
        return cls(
            addon_type=data.get("addonType") or data.get("addon_type", ""),
            current_balance=int(data.get("currentBalance", data.get("current_balance", 0)) or 0),
            total_purchased=int(data.get("totalPurchased", data.get("total_purchased", 0)) or 0),
            total_consumed=int(data.get("totalConsumed", data.get("total_consumed", 0)) or 0),
        )


@dataclass
class CreditReservation:
    """Credits held for one pipeline run until commit or release."""
    id: str
    account_id: str
    kind: str
    amount: int
    free_tier: bool = False
    state: str = "reserved"  # reserved | committing | committed | released


@dataclass
class QuotaDecision:
    allowed: bool
    required: int
    available: int = 0
    message: Optional[str] = None
    reservation: Optional[CreditReservation] = None


class QuotaService(Protocol):
    def fetch_balances(self, account_id: str) -> list[CreditBalance]: ...

    def consume(
        self,
        account_id: str,
        pool: str,
        amount: int,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> int: ...


def format_credits(amount: int) -> str:
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.0f}K"
    return str(amount)


def plan_consumption(amount: int, balances: dict[str, int], pools: tuple[str, ...]) -> list[tuple[str, int]]:
    """
    Split an amount across pools in priority order.

    A single pool that covers the whole amount is preferred; otherwise the
    amount is drained from the pools in order. Returns an empty plan when
    the pools together cannot cover it.
    """
    for pool in pools:
        if balances.get(pool, 0) >= amount:
            return [(pool, amount)]

    if sum(balances.get(p, 0) for p in pools) < amount:
        return []

    plan = []
    remaining = amount
    for pool in pools:
        take = min(balances.get(pool, 0), remaining)
        if take > 0:
            plan.append((pool, take))
            remaining -= take
        if remaining == 0:
            break
    return plan


# ============================================================================
# HTTP metering client
# ============================================================================

class HttpQuotaService:
    """
    Metering service client.

    GET  {base_url}/balances?accountId=...  -> [{addonType, currentBalance, ...}]
    POST {base_url}/consume                 -> {success, newBalance, message}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_balances(self, account_id: str) -> list[CreditBalance]:
        response = self.session.get(
            f"{self.base_url}/balances",
            params={"accountId": account_id},
            timeout=self.timeout,
        )
        if response.status_code in (401, 403, 404):
            return []
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            logger.warning("Balance response was not JSON; treating as no add-ons")
            return []
        if not isinstance(data, list):
            return []
        return [CreditBalance.from_dict(item) for item in data if isinstance(item, dict)]

    def consume(
        self,
        account_id: str,
        pool: str,
        amount: int,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> int:
        """
        Consume credits from one pool.

        Returns:
            New pool balance

        Raises:
            QuotaExceededError: If the metering service refuses the consumption
        """
        response = self.session.post(
            f"{self.base_url}/consume",
            json={
                "accountId": account_id,
                "addonType": pool,
                "amount": amount,
                "description": description,
                "referenceId": reference_id,
            },
            timeout=self.timeout,
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok or data.get("success") is False:
            raise QuotaExceededError(
                data.get("message") or f"Credit consumption failed (HTTP {response.status_code})",
                quota_type=pool,
                current=int(data.get("newBalance") or 0),
                limit=amount,
            )
        return int(data.get("newBalance") or 0)


# ============================================================================
# Gate
# ============================================================================

class QuotaGate:
    """
    Balance cache, reservation ledger and consumption for credit kinds.

    Usage:
        gate = QuotaGate(HttpQuotaService("https://billing.example/api/addon"))
        decision = gate.check_and_reserve("acct-1", "ai", 50_000)
        if decision.allowed:
            ...  # run generation
            gate.commit(decision.reservation)
    """

    def __init__(
        self,
        service: QuotaService,
        cache_ttl: float = 30.0,
        language: str = "de",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service = service
        self.cache_ttl = cache_ttl
        self.language = language
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[list[CreditBalance], float]] = {}
        self._inflight: dict[str, Future] = {}
        self._held: dict[tuple[str, str], int] = {}

    def fetch_balances(self, account_id: str, force: bool = False) -> list[CreditBalance]:
        """Cached balances; concurrent misses for one account share a single fetch."""
        with self._lock:
            cached = self._cache.get(account_id)
            if not force and cached and self._clock() - cached[1] < self.cache_ttl:
                logger.debug(f"Balance cache hit for {account_id}")
                return cached[0]
            future = self._inflight.get(account_id)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[account_id] = future

        if owner:
            try:
                balances = self.service.fetch_balances(account_id)
                with self._lock:
                    self._cache[account_id] = (balances, self._clock())
                future.set_result(balances)
            except Exception as e:
                logger.warning(f"Balance fetch failed for {account_id}: {e}")
                with self._lock:
                    stale = self._cache.get(account_id)
                future.set_result(stale[0] if stale else [])
            finally:
                with self._lock:
                    self._inflight.pop(account_id, None)

        return future.result()

    def held(self, account_id: str, kind: str) -> int:
        """Credits currently reserved but not yet committed or released."""
        with self._lock:
            return self._held.get((account_id, kind), 0)

    def check_and_reserve(self, account_id: str, kind: str, amount: int) -> QuotaDecision:
        """
        Allow and reserve, or deny with a user-facing message.

        A kind with no purchased pool at all is in the free tier and always
        allowed; its reservation consumes nothing on commit.
        """
        pools = CREDIT_POOLS[kind]
        labels = get_labels(PIPELINE_LABELS, self.language)
        balances = {b.addon_type: b.current_balance for b in self.fetch_balances(account_id)}

        with self._lock:
            if not any(pool in balances for pool in pools):
                reservation = CreditReservation(
                    id=create_id("reservation"), account_id=account_id, kind=kind,
                    amount=amount, free_tier=True,
                )
                return QuotaDecision(
                    allowed=True, required=amount, message=labels["credits_free_tier"],
                    reservation=reservation,
                )

            key = (account_id, kind)
            available = sum(balances.get(p, 0) for p in pools) - self._held.get(key, 0)
            if available < amount:
                template = labels["credits_denied"] if kind == "ai" else labels["credits_denied_pages"]
                logger.info(f"Quota denied for {account_id}: {kind} needs {amount}, has {available}")
                return QuotaDecision(
                    allowed=False,
                    required=amount,
                    available=max(0, available),
                    message=template.format(
                        available=format_credits(max(0, available)),
                        required=format_credits(amount),
                    ),
                )

            self._held[key] = self._held.get(key, 0) + amount
            reservation = CreditReservation(
                id=create_id("reservation"), account_id=account_id, kind=kind, amount=amount,
            )
            return QuotaDecision(
                allowed=True, required=amount, available=available, reservation=reservation,
            )

    def _settle(self, reservation: CreditReservation, state: str) -> bool:
        with self._lock:
            if reservation.state != "reserved":
                return False
            reservation.state = state
            if not reservation.free_tier:
                key = (reservation.account_id, reservation.kind)
                self._held[key] = max(0, self._held.get(key, 0) - reservation.amount)
            return True

    def _apply_consumption(self, reservation: CreditReservation, consumed: dict[str, int]) -> None:
        # Deduct from the cached balances and drop the hold in one locked step
        with self._lock:
            cached = self._cache.get(reservation.account_id)
            if cached and consumed:
                balances = [
                    replace(b, current_balance=max(0, b.current_balance - consumed.get(b.addon_type, 0)))
                    for b in cached[0]
                ]
                self._cache[reservation.account_id] = (balances, cached[1])
            reservation.state = "committed"
            key = (reservation.account_id, reservation.kind)
            self._held[key] = max(0, self._held.get(key, 0) - reservation.amount)

    def commit(
        self,
        reservation: CreditReservation,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> int:
        """
        Consume a reservation from the pools in priority order.

        The hold stays in place until consumption has been applied to the
        cached balances, so concurrent checks never see the credits twice.

        Returns:
            Credits actually consumed (0 for free tier or a settled reservation)
        """
        if reservation.free_tier:
            self._settle(reservation, "committed")
            return 0
        with self._lock:
            if reservation.state != "reserved":
                return 0
            reservation.state = "committing"

        consumed: dict[str, int] = {}
        try:
            pools = CREDIT_POOLS[reservation.kind]
            balances = {
                b.addon_type: b.current_balance for b in self.fetch_balances(reservation.account_id)
            }
            plan = plan_consumption(reservation.amount, balances, pools)
            if not plan:
                logger.warning(
                    f"Pools for {reservation.account_id} no longer cover {reservation.amount} {reservation.kind} credits"
                )

            for index, (pool, part) in enumerate(plan, start=1):
                suffix = f" ({index}/{len(plan)})" if len(plan) > 1 else ""
                try:
                    self.service.consume(
                        reservation.account_id, pool, part,
                        description=f"{description or ''}{suffix}", reference_id=reference_id,
                    )
                    consumed[pool] = part
                except QuotaExceededError as e:
                    logger.warning(f"Metering refused {part} from {pool}: {e}")
                except Exception as e:
                    logger.warning(f"Credit consumption from {pool} failed: {e}")
        finally:
            self._apply_consumption(reservation, consumed)

        self.fetch_balances(reservation.account_id, force=True)
        total = sum(consumed.values())
        logger.info(f"Committed {total} {reservation.kind} credits for {reservation.account_id}")
        return total

    def release(self, reservation: CreditReservation) -> bool:
        """Return reserved credits without consuming anything."""
        released = self._settle(reservation, "released")
        if released:
            logger.debug(f"Released reservation {reservation.id}")
        return released
