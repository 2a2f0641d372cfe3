"""
Shared fixtures: a host with a factory, two tokens, one 0.30% pool and
funded accounts.
"""

from dataclasses import dataclass

import pytest

from ledgerdex.amm import Factory
from ledgerdex.constants import TOKEN_ID
from ledgerdex.host import Host
from ledgerdex.tokens import MAX_ALLOWANCE, MultiToken

OWNER = "AU1" + "0" * 40
ALICE = "AU1" + "a" * 40
BOB = "AU1" + "b" * 40
CAROL = "AU1" + "c" * 40

USER_FUNDS = 10**15
LP_LIQUIDITY = 10**12
LP_TICK_LOWER = -12000
LP_TICK_UPPER = 12000


@dataclass
class Dex:
    host: Host
    factory: str
    token0: str
    token1: str
    pool: str

    owner: str = OWNER
    alice: str = ALICE
    bob: str = BOB
    carol: str = CAROL

    def balance(self, token: str, who: str) -> int:
        return self.host.view(token, "balanceOf", who, TOKEN_ID)

    def approve(self, who: str, token: str, spender: str, amount: int = MAX_ALLOWANCE) -> None:
        self.host.call(who, token, "approve", spender, TOKEN_ID, amount)

    def state(self):
        return self.host.view(self.pool, "getState")

    def add_liquidity(self, who: str, liquidity: int = LP_LIQUIDITY,
                      tick_lower: int = LP_TICK_LOWER, tick_upper: int = LP_TICK_UPPER):
        self.approve(who, self.token0, self.pool)
        self.approve(who, self.token1, self.pool)
        return self.host.call(who, self.pool, "mint", who, tick_lower, tick_upper, liquidity)


@pytest.fixture
def host() -> Host:
    return Host()


@pytest.fixture
def dex(host: Host) -> Dex:
    factory = host.deploy(OWNER, Factory)
    token_a = host.deploy(OWNER, MultiToken, "Alpha", "ALP", 18, 10 * USER_FUNDS)
    token_b = host.deploy(OWNER, MultiToken, "Beta", "BET", 18, 10 * USER_FUNDS)
    token0, token1 = sorted([token_a, token_b])
    pool = host.call(OWNER, factory, "createPool", token0, token1, 3000)

    for user in (ALICE, BOB, CAROL):
        for token in (token0, token1):
            host.call(OWNER, token, "transfer", user, TOKEN_ID, USER_FUNDS)

    return Dex(host=host, factory=factory, token0=token0, token1=token1, pool=pool)


@pytest.fixture
def funded_dex(dex: Dex) -> Dex:
    """``dex`` with CAROL providing liquidity over [-12000, 12000]."""
    dex.add_liquidity(CAROL)
    return dex
