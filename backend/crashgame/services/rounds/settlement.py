"""Payout settlement, decoupled from the round.

A withdrawal is final as soon as the engine broadcasts it. The transfer
happens later on the settlement worker, from an immutable PayoutRequest,
so it can still complete after the round it was earned in has reset.
"""
import logging
import queue
import time
import uuid
from dataclasses import dataclass, field

import requests

from crashgame.exceptions import PayoutError


logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class PayoutRequest:
    address: str
    amount: float
    multiplier: float
    payout: float
    round_id: int
    idempotency_key: str = field(default_factory=lambda: uuid.uuid4().hex)


class PayoutGatewayClient:
    """Settles withdrawals through an HTTP payout gateway."""

    def __init__(self, base_url: str, api_key: str = None, timeout: float = 15):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self, idempotency_key):
        headers = {
            'Content-Type': 'application/json',
            'Idempotency-Key': idempotency_key,
        }
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
        return headers

    def settle(self, address: str, amount: float, multiplier: float, idempotency_key: str) -> float:
        payload = {
            'address': address,
            'stake': amount,
            'multiplier': multiplier,
            'payout': amount * multiplier,
        }
        try:
            res = requests.post(
                f"{self.base_url}/payouts",
                json=payload,
                headers=self._headers(idempotency_key),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PayoutError(f"Payout gateway unreachable: {exc}") from exc

        if res.status_code >= 400:
            raise PayoutError(f"Payout gateway returned {res.status_code}: {res.text[:200]}")

        try:
            data = res.json()
        except ValueError as exc:
            raise PayoutError("Payout gateway returned invalid JSON") from exc

        paid = data.get('paid', payload['payout'])
        try:
            return float(paid)
        except (TypeError, ValueError) as exc:
            raise PayoutError(f"Payout gateway returned invalid amount {paid!r}") from exc


class DryRunPayoutClient:
    """Used when no gateway is configured: logs and reports the full payout."""

    def settle(self, address, amount, multiplier, idempotency_key):
        payout = amount * multiplier
        logger.info(
            f"[payout-dry-run] address={address} stake={amount} multiplier={multiplier} "
            f"payout={payout} key={idempotency_key}"
        )
        return payout


def build_payout_client(config):
    url = config.get('PAYOUT_GATEWAY_URL')
    if not url:
        return DryRunPayoutClient()
    return PayoutGatewayClient(
        url,
        api_key=config.get('PAYOUT_API_KEY'),
        timeout=float(config.get('PAYOUT_TIMEOUT_SEC', 15)),
    )


class SettlementWorker:
    """Queue of payout requests drained by one background task."""

    def __init__(self, client, notify=None, max_attempts: int = 3,
                 backoff_sec: float = 0.5, spawn=None, sleep=time.sleep):
        self.client = client
        self.notify = notify
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_sec = backoff_sec
        self._spawn = spawn
        self._sleep = sleep
        self._queue = queue.Queue()
        self._started = False

    def start(self) -> None:
        if self._started or self._spawn is None:
            return
        self._started = True
        self._spawn(self._loop)

    def stop(self) -> None:
        if self._started:
            self._queue.put(_STOP)
            self._started = False

    def submit(self, request: PayoutRequest) -> None:
        self._queue.put(request)

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> list:
        """Process whatever is queued on the calling thread."""
        results = []
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                return results
            if request is _STOP:
                continue
            results.append(self.process(request))

    def _loop(self):
        while True:
            request = self._queue.get()
            if request is _STOP:
                return
            try:
                self.process(request)
            except Exception:
                logger.exception(f"[payout-crash] key={request.idempotency_key}")

    def process(self, request: PayoutRequest):
        """Settle one request; returns the paid amount or None on failure."""
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                paid = self.client.settle(
                    request.address,
                    request.amount,
                    request.multiplier,
                    idempotency_key=request.idempotency_key,
                )
            except PayoutError as exc:
                last_error = exc
                logger.warning(
                    f"[payout-retry] address={request.address} round={request.round_id} "
                    f"attempt={attempt}/{self.max_attempts} error={exc}"
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_sec * attempt)
                continue

            logger.info(
                f"[payout-settled] address={request.address} round={request.round_id} "
                f"payout={request.payout} paid={paid}"
            )
            self._notify({
                'type': 'payout_settled',
                'address': request.address,
                'roundId': request.round_id,
                'payout': request.payout,
                'paid': paid,
                'idempotencyKey': request.idempotency_key,
            })
            return paid

        logger.error(
            f"[payout-failed] address={request.address} round={request.round_id} "
            f"payout={request.payout} key={request.idempotency_key} error={last_error}"
        )
        self._notify({
            'type': 'settlement_failed',
            'address': request.address,
            'roundId': request.round_id,
            'payout': request.payout,
            'idempotencyKey': request.idempotency_key,
            'message': str(last_error),
        })
        return None

    def _notify(self, message):
        if self.notify is None:
            return
        try:
            self.notify(message)
        except Exception:
            logger.exception(f"[payout-notify] could not broadcast {message.get('type')}")
