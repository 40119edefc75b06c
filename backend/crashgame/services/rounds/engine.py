import json
import logging
import math
import random
import time

from crashgame.exceptions import InvalidStateTransition
from . import state as st
from .progression import (
    BASE_LEVEL_DURATION_MS,
    TICK_INTERVAL_MS,
    display_value,
    draw_crash_point,
    next_multiplier,
)
from .settlement import PayoutRequest


logger = logging.getLogger(__name__)

WAIT_DURATION_MS = 15000
COOLDOWN_DURATION_MS = 2000


class RoundEngine:
    """Owns the shared round and drives it waiting -> running -> ended.

    Every public method goes through the scheduler, so client actions and
    timer callbacks run to completion one at a time. The engine holds a
    single timer handle; entering a phase replaces it.
    """

    def __init__(self, hub, scheduler, settlement=None, recorder=None, config=None,
                 crash_point=None, rng=None, clock=time.time):
        cfg = config or {}
        self.hub = hub
        self.settlement = settlement
        self.recorder = recorder
        self.wait_ms = int(cfg.get('WAIT_DURATION_MS', WAIT_DURATION_MS))
        self.cooldown_ms = int(cfg.get('COOLDOWN_DURATION_MS', COOLDOWN_DURATION_MS))
        self.tick_ms = int(cfg.get('TICK_INTERVAL_MS', TICK_INTERVAL_MS))
        self.base_level_ms = int(cfg.get('BASE_LEVEL_DURATION_MS', BASE_LEVEL_DURATION_MS))
        self.state = st.RoundState()
        self._scheduler = scheduler
        self._rng = rng or random.Random()
        self._crash_point = crash_point or (lambda: draw_crash_point(self._rng))
        self._clock = clock
        self._timer = None
        self._started = False

    # ---- lifecycle ----

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        logger.info(f"[engine-start] wait={self.wait_ms}ms cooldown={self.cooldown_ms}ms tick={self.tick_ms}ms")
        self._scheduler.run(self._open_waiting)

    def shutdown(self) -> None:
        self._cancel_timer()
        self._scheduler.stop()
        if self.settlement is not None:
            self.settlement.stop()
        self._started = False
        logger.info("[engine-stop] timers cancelled")

    # ---- client operations ----

    def join(self, address, amount, external_reference=None) -> st.JoinResult:
        return self._scheduler.run(self._join, address, amount, external_reference)

    def withdraw(self, address) -> st.WithdrawResult:
        return self._scheduler.run(self._withdraw, address)

    def current_multiplier(self) -> float:
        return self._scheduler.run(self._current_multiplier)

    def snapshot(self) -> dict:
        return self._scheduler.run(self._snapshot)

    def connect(self, handle) -> dict:
        """Send the client its ``game_state`` snapshot, then register it.

        Both happen in one scheduled step, so the snapshot is always the
        first frame the handle receives. Returns the snapshot.
        """
        return self._scheduler.run(self._connect, handle)

    def disconnect(self, handle) -> None:
        self.hub.unregister(handle)

    # ---- phase machine ----

    def _transition(self, target):
        current = self.state.phase
        if st.TRANSITIONS.get(current) != target:
            raise InvalidStateTransition(current, target)
        self.state.phase = target

    def _set_timer(self, delay_ms, callback):
        self._cancel_timer()
        self._timer = self._scheduler.call_later(delay_ms / 1000.0, callback)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _open_waiting(self):
        # a restart after shutdown can find the round mid-flight
        if self.state.phase != st.WAITING:
            logger.warning(f"[engine-restart] abandoning round={self.state.round_id} phase={self.state.phase}")
            self.state.phase = st.WAITING
        self._begin_waiting()

    def _begin_waiting(self):
        state = self.state
        state.players.clear()
        state.current_multiplier = 1.0
        state.displayed_multiplier = 1.0
        state.crash_at = None
        state.started_at = None
        self._process_pending_queue()
        self.hub.broadcast({
            'type': 'waiting_phase',
            'message': 'Waiting for next game',
            'waitTime': self.wait_ms,
            'queueSize': len(state.pending_queue),
        })
        logger.info(f"[round-waiting] next_round={state.round_id + 1} players={len(state.players)}")
        self._set_timer(self.wait_ms, self._start_round)

    def _start_round(self):
        self._transition(st.RUNNING)
        state = self.state
        state.round_id += 1
        state.crash_at = self._crash_point()
        state.started_at = self._now_ms()
        state.current_multiplier = 1.0
        state.displayed_multiplier = 1.0
        self.hub.broadcast({
            'type': 'game_started',
            'roundId': state.round_id,
            'stakes': state.stakes(),
            'totalPlayers': len(state.players),
            'totalStakeAmount': state.total_stake_amount(),
        })
        logger.info(
            f"[round-start] round={state.round_id} crash_at={state.crash_at:.2f} "
            f"players={len(state.players)} staked={state.total_stake_amount()}"
        )
        self._tick()

    def _tick(self):
        state = self.state
        if state.phase != st.RUNNING:
            return
        self._broadcast_multiplier(display_value(state.current_multiplier, state.crash_at))
        state.current_multiplier = next_multiplier(
            state.current_multiplier, state.crash_at, self.tick_ms, self.base_level_ms
        )
        if state.current_multiplier >= state.crash_at:
            state.current_multiplier = state.crash_at
            self._broadcast_multiplier(state.crash_at)
            self._end_round()
            return
        self._set_timer(self.tick_ms, self._tick)

    def _broadcast_multiplier(self, value):
        self.state.displayed_multiplier = value
        self.hub.broadcast({
            'type': 'multiplier_update',
            'multiplier': value,
            'timestamp': self._now_ms(),
        })

    def _end_round(self):
        self._transition(st.ENDED)
        state = self.state
        surviving = state.active_addresses()
        self.hub.broadcast({
            'type': 'game_ended',
            'roundId': state.round_id,
            'crashAt': state.crash_at,
            'survivingPlayers': surviving,
        })
        logger.info(
            f"[round-end] round={state.round_id} crash_at={state.crash_at:.2f} "
            f"players={len(state.players)} lost={len(surviving)}"
        )
        if state.players and self.recorder is not None:
            self.recorder.submit(
                state.crash_at,
                round_number=state.round_id,
                player_count=len(state.players),
                total_staked=state.total_stake_amount(),
            )
        self._set_timer(self.cooldown_ms, self._reset_round)

    def _reset_round(self):
        self._transition(st.WAITING)
        self._begin_waiting()

    def _process_pending_queue(self):
        state = self.state
        if not state.pending_queue:
            return []
        now = self._now_ms()
        moved = []
        for address, queued in state.pending_queue.items():
            state.players[address] = st.Stake(
                address=address,
                amount=queued.amount,
                joined_at=now,
                external_reference=queued.external_reference,
            )
            moved.append({'address': address, 'amount': queued.amount})
        state.pending_queue.clear()
        self.hub.broadcast({
            'type': 'queue_processed',
            'players': moved,
            'count': len(moved),
        })
        logger.info(f"[queue-flush] moved={len(moved)} into round={state.round_id + 1}")
        return moved

    # ---- stake lifecycle ----

    def _join(self, address, amount, external_reference=None):
        state = self.state
        try:
            amount = self._coerce_amount(amount)
        except ValueError:
            return st.JoinResult(False, False, st.INVALID_STAKE, 'Stake amount must be a positive number')
        if not isinstance(address, str) or not address.strip():
            return st.JoinResult(False, False, st.INVALID_STAKE, 'A player address is required')

        if address in state.pending_queue:
            return st.JoinResult(False, True, st.ALREADY_QUEUED, 'Already queued for the next round')

        if state.phase == st.WAITING:
            state.players[address] = st.Stake(
                address=address,
                amount=amount,
                joined_at=self._now_ms(),
                external_reference=external_reference,
            )
            self.hub.broadcast({
                'type': 'player_joined',
                'address': address,
                'amount': amount,
                'totalPlayers': len(state.players),
                'stakes': state.stakes(),
                'totalStakeAmount': state.total_stake_amount(),
            })
            logger.info(f"[join] address={address} amount={amount} round={state.round_id + 1}")
            return st.JoinResult(True, False, st.ACCEPTED, 'Joined the current round')

        if state.phase in (st.RUNNING, st.ENDED):
            if address in state.players:
                return st.JoinResult(False, False, st.ALREADY_IN_ROUND,
                                     'Already playing this round, join again once the next round opens')
            state.pending_queue[address] = st.QueuedStake(
                address=address,
                amount=amount,
                queued_at=self._now_ms(),
                external_reference=external_reference,
            )
            self.hub.broadcast({
                'type': 'bet_queued',
                'address': address,
                'amount': amount,
                'queueSize': len(state.pending_queue),
            })
            logger.info(f"[queue] address={address} amount={amount} queue={len(state.pending_queue)}")
            return st.JoinResult(True, True, st.QUEUED, 'Round in progress, bet queued for the next round')

        return st.JoinResult(False, False, st.REJECTED, 'Cannot join at this time')

    @staticmethod
    def _coerce_amount(amount):
        if isinstance(amount, bool):
            raise ValueError(amount)
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise ValueError(amount)
        if not math.isfinite(value) or value <= 0:
            raise ValueError(amount)
        return value

    def _withdraw(self, address):
        state = self.state
        stake = state.players.get(address) if isinstance(address, str) else None
        if state.phase != st.RUNNING or stake is None:
            return st.WithdrawResult(False, st.NOT_APPLICABLE, 'Cannot withdraw at this time')
        if stake.has_withdrawn:
            return st.WithdrawResult(False, st.ALREADY_WITHDRAWN, 'Already withdrawn this round')

        multiplier = state.displayed_multiplier
        payout = round(stake.amount * multiplier, 8)
        stake.has_withdrawn = True
        stake.withdraw_multiplier = multiplier

        self.hub.broadcast({
            'type': 'player_withdrew',
            'address': address,
            'multiplier': multiplier,
            'payout': payout,
            'remainingPlayers': len(state.active_addresses()),
            'stakes': state.stakes(),
            'totalStakeAmount': state.total_stake_amount(),
        })
        logger.info(f"[withdraw] address={address} round={state.round_id} multiplier={multiplier} payout={payout}")

        if self.settlement is not None:
            self.settlement.submit(PayoutRequest(
                address=address,
                amount=stake.amount,
                multiplier=multiplier,
                payout=payout,
                round_id=state.round_id,
            ))
        return st.WithdrawResult(True, st.PAID, 'Withdrawal successful', payout=payout, multiplier=multiplier)

    # ---- views ----

    def _current_multiplier(self):
        if self.state.phase != st.RUNNING:
            return 1.0
        return self.state.displayed_multiplier

    def _snapshot(self):
        state = self.state
        return {
            'roundId': state.round_id,
            'phase': state.phase,
            'stakes': state.stakes(),
            'totalPlayers': len(state.players),
            'totalStakeAmount': state.total_stake_amount(),
            'currentMultiplier': self._current_multiplier(),
            'queuedBets': [queued.to_dict() for queued in state.pending_queue.values()],
            'queueSize': len(state.pending_queue),
        }

    def _connect(self, handle):
        snapshot = self._snapshot()
        # game_state goes out before registration so no broadcast can overtake it
        try:
            handle.send(json.dumps({'type': 'game_state', 'data': snapshot}))
        except Exception as exc:
            logger.warning(f"[connect-drop] handle={handle!r} error={exc}")
            return snapshot
        self.hub.register(handle)
        return snapshot

    def _now_ms(self):
        return int(self._clock() * 1000)
