"""
Deterministic contract host.

The host owns the ledger, the slot clock, native coin balances, the event
log and the queue of scheduled messages. Every top-level call runs to
completion and either commits all of its effects or none of them; nested
calls between contracts roll back to their own savepoint on failure.

Contracts subclass :class:`Contract` and mark their externally reachable
methods with :func:`entry_point` or :func:`view`. Each such method receives a
:class:`CallContext` as its first argument.
"""

from __future__ import annotations

import hashlib
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type

from ..config import EngineConfig
from ..exceptions import (
    ContractNotFoundError,
    DexError,
    EntryPointError,
    InsufficientBalanceError,
    ValidationError,
)
from ..logger import get_logger, set_log_level
from .ledger import Ledger, Storage

logger = get_logger(__name__)

_HOST_NS = "__host__/"
_CODE_NS = "__code__/"
_COINS_NS = "__coins__/"
_MESSAGE_NS = _HOST_NS + "message/"
_MESSAGE_SEQ = _HOST_NS + "message_seq"
_DEPLOY_NONCE = _HOST_NS + "deploy_nonce"

# Coins attached to queued messages are parked here until delivery
MESSAGE_ESCROW = "__message_escrow__"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Slot:
    """A (period, thread) position on the host clock."""
    period: int
    thread: int

    def next(self, threads: int) -> "Slot":
        if self.thread + 1 >= threads:
            return Slot(self.period + 1, 0)
        return Slot(self.period, self.thread + 1)

    def __str__(self) -> str:
        return f"({self.period}:{self.thread})"


@dataclass(frozen=True)
class WakeRequest:
    """A contract's request to be invoked again inside a future slot window."""
    target: str
    function: str
    validity_start: Slot
    validity_end: Slot
    max_gas: int
    coins: int = 0
    payload: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "function": self.function,
            "start": [self.validity_start.period, self.validity_start.thread],
            "end": [self.validity_end.period, self.validity_end.thread],
            "maxGas": self.max_gas,
            "coins": self.coins,
            "payload": list(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WakeRequest":
        return cls(
            target=data["target"],
            function=data["function"],
            validity_start=Slot(*data["start"]),
            validity_end=Slot(*data["end"]),
            max_gas=data["maxGas"],
            coins=data["coins"],
            payload=tuple(data["payload"]),
        )


@dataclass(frozen=True)
class Event:
    slot: Slot
    emitter: str
    data: str


# ---------------------------------------------------------------------------
# Contract base
# ---------------------------------------------------------------------------

def entry_point(name: str, *, view: bool = False) -> Callable:
    """Expose a contract method to the host under *name*."""
    def decorate(fn: Callable) -> Callable:
        fn.__entry_point__ = (name, view)
        return fn
    return decorate


def view(name: str) -> Callable:
    return entry_point(name, view=True)


class Contract:
    """
    Base class for deployed contracts.

    Instances are stateless apart from their address; everything durable
    lives in the ledger behind ``ctx.storage``.
    """

    _entry_points: Dict[str, Tuple[str, bool]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        points: Dict[str, Tuple[str, bool]] = {}
        for base in reversed(cls.__mro__):
            for attr, member in vars(base).items():
                tag = getattr(member, "__entry_point__", None)
                if tag is not None:
                    points[tag[0]] = (attr, tag[1])
        cls._entry_points = points

    def __init__(self, address: str):
        self.address = address

    def constructor(self, ctx: "CallContext", *args: Any) -> None:
        """Runs once, inside the deploying call."""

    @classmethod
    def entry_points(cls) -> Dict[str, Tuple[str, bool]]:
        return dict(cls._entry_points)

    def resolve(self, name: str, readonly: bool) -> Callable:
        try:
            attr, is_view = self._entry_points[name]
        except KeyError:
            raise EntryPointError("UNKNOWN_ENTRY_POINT", f"{type(self).__name__}.{name}") from None
        if readonly and not is_view:
            raise EntryPointError("NOT_A_VIEW", f"{type(self).__name__}.{name}")
        return getattr(self, attr)


# ---------------------------------------------------------------------------
# Call context
# ---------------------------------------------------------------------------

class CallContext:
    """What a contract method sees of the host during one invocation."""

    def __init__(self, host: "Host", caller: str, callee: str, coins: int):
        self.host = host
        self.caller = caller
        self.callee = callee
        self.coins = coins
        self.storage = Storage(host.ledger, callee)

    @property
    def config(self) -> EngineConfig:
        return self.host.config

    @property
    def slot(self) -> Slot:
        return self.host.slot

    @property
    def period(self) -> int:
        return self.host.slot.period

    @property
    def thread(self) -> int:
        return self.host.slot.thread

    @property
    def timestamp(self) -> int:
        return self.host.timestamp

    @property
    def balance(self) -> int:
        return self.host.coin_balance(self.callee)

    def call(self, address: str, method: str, *args: Any, coins: int = 0) -> Any:
        return self.host._nested_call(self.callee, address, method, args, coins)

    def deploy(self, contract_cls: Type[Contract], *args: Any, coins: int = 0) -> str:
        return self.host._deploy(self.callee, contract_cls, args, coins)

    def transfer_coins(self, to: str, amount: int) -> None:
        self.host._move_coins(self.callee, to, amount)

    def emit(self, data: str) -> None:
        self.host._emit(self.callee, data)

    def send_message(self, request: WakeRequest) -> None:
        self.host._enqueue(self.callee, request)

    def atomic(self):
        """Roll back everything done inside the block if it raises."""
        return self.host.atomic()


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------

class Host:
    """
    Single-threaded execution environment for contracts.

    Example:
        >>> host = Host()
        >>> token = host.deploy("AU1alice", MultiToken, "Alpha", "ALP", 18, 10**24)
        >>> host.call("AU1alice", token, "transfer", "AU1bob", 0, 100)
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        if config is not None:
            config.validate()
            set_log_level(config.log_level)
        self.config = config or EngineConfig()
        self.ledger = Ledger()
        self._instances: Dict[str, Contract] = {}
        self._events: List[Event] = []
        self._slot = Slot(0, 0)
        self._tx_depth = 0

    # -- Clock ---------------------------------------------------------

    @property
    def slot(self) -> Slot:
        return self._slot

    @property
    def threads(self) -> int:
        return self.config.host.threads_per_period

    @property
    def timestamp(self) -> int:
        """Milliseconds at the start of the current slot."""
        host_cfg = self.config.host
        per_thread = host_cfg.period_duration_ms // host_cfg.threads_per_period
        return (
            host_cfg.genesis_timestamp_ms
            + self._slot.period * host_cfg.period_duration_ms
            + self._slot.thread * per_thread
        )

    def advance(self, slots: int = 1) -> int:
        """Move the clock forward slot by slot, running due messages. Returns how many ran."""
        executed = 0
        for _ in range(slots):
            self._slot = self._slot.next(self.threads)
            executed += self._run_due_messages()
        return executed

    def advance_periods(self, periods: int) -> int:
        return self.advance(periods * self.threads)

    def run_until(self, slot: Slot) -> int:
        executed = 0
        while self._slot < slot:
            executed += self.advance(1)
        return executed

    def warp(self, slot: Slot) -> None:
        """
        Jump the clock to *slot* without running the slots in between, as
        after an outage. Messages whose window closed meanwhile are dropped
        on the next advance.
        """
        if slot <= self._slot:
            raise ValidationError("INVALID_WARP", f"{slot} is not after {self._slot}")
        logger.info("Clock warped from %s to %s", self._slot, slot)
        self._slot = slot

    # -- Transactions --------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        marker = self.ledger.savepoint()
        events_marker = len(self._events)
        self._tx_depth += 1
        try:
            yield
        except Exception:
            self.ledger.rollback(marker)
            del self._events[events_marker:]
            raise
        finally:
            self._tx_depth -= 1
        if self._tx_depth == 0:
            self.ledger.commit()

    def call(self, caller: str, address: str, method: str, *args: Any, coins: int = 0) -> Any:
        """Top-level call; all effects commit together or not at all."""
        with self.atomic():
            return self._invoke(caller, address, method, args, coins, readonly=False)

    def view(self, address: str, method: str, *args: Any) -> Any:
        """Read-only call; nothing it touches survives."""
        marker = self.ledger.savepoint()
        events_marker = len(self._events)
        self._tx_depth += 1
        try:
            return self._invoke("", address, method, args, 0, readonly=True)
        finally:
            self._tx_depth -= 1
            self.ledger.rollback(marker)
            del self._events[events_marker:]

    def deploy(self, deployer: str, contract_cls: Type[Contract], *args: Any, coins: int = 0) -> str:
        with self.atomic():
            return self._deploy(deployer, contract_cls, args, coins)

    def _nested_call(self, caller: str, address: str, method: str, args: Tuple[Any, ...], coins: int) -> Any:
        with self.atomic():
            return self._invoke(caller, address, method, args, coins, readonly=False)

    def _invoke(
        self,
        caller: str,
        address: str,
        method: str,
        args: Tuple[Any, ...],
        coins: int,
        readonly: bool,
    ) -> Any:
        contract = self.contract_at(address)
        fn = contract.resolve(method, readonly)
        if coins:
            self._move_coins(caller, address, coins)
        ctx = CallContext(self, caller, address, coins)
        return fn(ctx, *args)

    def _deploy(self, deployer: str, contract_cls: Type[Contract], args: Tuple[Any, ...], coins: int) -> str:
        nonce = int(self.ledger.get(_DEPLOY_NONCE, 0)) + 1
        self.ledger.set(_DEPLOY_NONCE, nonce)
        digest = hashlib.blake2b(f"{deployer}:{nonce}".encode(), digest_size=16).hexdigest()
        address = f"AS1{digest}"
        self.ledger.set(_CODE_NS + address, contract_cls)
        if coins:
            self._move_coins(deployer, address, coins)
        contract = self.contract_at(address)
        contract.constructor(CallContext(self, deployer, address, coins), *args)
        logger.debug("Deployed %s at %s", contract_cls.__name__, address)
        return address

    # -- Contracts -----------------------------------------------------

    def contract_at(self, address: str) -> Contract:
        contract_cls = self.ledger.get(_CODE_NS + address)
        if contract_cls is None:
            raise ContractNotFoundError("CONTRACT_NOT_FOUND", address)
        contract = self._instances.get(address)
        if contract is None or type(contract) is not contract_cls:
            contract = contract_cls(address)
            self._instances[address] = contract
        return contract

    def is_contract(self, address: str) -> bool:
        return (_CODE_NS + address) in self.ledger

    def storage(self, address: str) -> Storage:
        return Storage(self.ledger, address)

    # -- Coins ---------------------------------------------------------

    def coin_balance(self, address: str) -> int:
        return int(self.ledger.get(_COINS_NS + address, 0))

    def mint_coins(self, address: str, amount: int) -> None:
        """Genesis-style credit, outside any contract."""
        if amount <= 0:
            raise ValidationError("ZERO_AMOUNT")
        with self.atomic():
            self.ledger.set(_COINS_NS + address, self.coin_balance(address) + amount)

    def _move_coins(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError("NEGATIVE_AMOUNT")
        if amount == 0:
            return
        balance = self.coin_balance(sender)
        if balance < amount:
            raise InsufficientBalanceError("INSUFFICIENT_COINS", f"{sender} has {balance}, needs {amount}")
        self.ledger.set(_COINS_NS + sender, balance - amount)
        self.ledger.set(_COINS_NS + recipient, self.coin_balance(recipient) + amount)

    # -- Events --------------------------------------------------------

    def _emit(self, emitter: str, data: str) -> None:
        self._events.append(Event(self._slot, emitter, data))
        logger.debug("%s %s %s", self._slot, emitter, data)

    @property
    def events(self) -> List[Event]:
        return list(self._events)

    def events_from(self, address: str, prefix: str = "") -> List[str]:
        return [e.data for e in self._events if e.emitter == address and e.data.startswith(prefix)]

    # -- Scheduled messages --------------------------------------------

    def _enqueue(self, sender: str, request: WakeRequest) -> None:
        if request.validity_start <= self._slot:
            raise ValidationError("INVALID_WAKE_SLOT", f"{request.validity_start} is not after {self._slot}")
        if request.validity_end < request.validity_start:
            raise ValidationError("INVALID_WAKE_WINDOW")
        if request.coins:
            self._move_coins(sender, MESSAGE_ESCROW, request.coins)
        seq = int(self.ledger.get(_MESSAGE_SEQ, 0)) + 1
        self.ledger.set(_MESSAGE_SEQ, seq)
        record = request.to_dict()
        record["sender"] = sender
        record["seq"] = seq
        self.ledger.set(f"{_MESSAGE_NS}{seq:012d}", record)

    def pending_messages(self) -> List[WakeRequest]:
        return [WakeRequest.from_dict(self.ledger.get(key)) for key in self.ledger.keys(_MESSAGE_NS)]

    def _run_due_messages(self) -> int:
        due = []
        for key in list(self.ledger.keys(_MESSAGE_NS)):
            record = self.ledger.get(key)
            request = WakeRequest.from_dict(record)
            if request.validity_end < self._slot:
                with self.atomic():
                    self.ledger.delete(key)
                    if request.coins:
                        self._move_coins(MESSAGE_ESCROW, record["sender"], request.coins)
                logger.info(
                    "Dropped expired message %s.%s from %s at %s",
                    request.target, request.function, record["sender"], self._slot,
                )
            elif request.validity_start <= self._slot:
                due.append((request.validity_start, record["seq"], key, record["sender"], request))

        executed = 0
        for _, _, key, sender, request in sorted(due, key=lambda item: (item[0], item[1])):
            with self.atomic():
                self.ledger.delete(key)
            try:
                with self.atomic():
                    if request.coins:
                        self._move_coins(MESSAGE_ESCROW, request.target, request.coins)
                    contract = self.contract_at(request.target)
                    fn = contract.resolve(request.function, readonly=False)
                    fn(CallContext(self, sender, request.target, request.coins), *request.payload)
                executed += 1
            except DexError as exc:
                logger.warning(
                    "Scheduled call %s.%s failed at %s: %s",
                    request.target, request.function, self._slot, exc,
                )
            except Exception:
                # the slot loop keeps running whatever a delivery raises
                logger.exception(
                    "Scheduled call %s.%s crashed at %s", request.target, request.function, self._slot
                )
        return executed
