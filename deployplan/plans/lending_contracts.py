"""Simulated behaviour of the lending-protocol contracts on ``LocalChain``.

These are small Python models of the Solidity contracts the lending plan
deploys: just enough state and checks for the plan's post-deployment
calls to be applied, observed and (where the real contract would) reverted.
Addresses are stored lower-cased; amounts are plain integers in base units.
"""

from __future__ import annotations

from typing import Any

from deployplan.network.local import SimulatedContract, external, require, view

MANTISSA = 10**18


def _addr(value: str) -> str:
    return str(value).lower()


class ERC20(SimulatedContract):
    """Fixed-supply ERC-20: ``constructor(owner, supply, name, symbol)``."""

    NAME = "ERC20"
    DECIMALS = 18

    def constructor(self, sender: str, owner: str, supply: int, name: str, symbol: str) -> None:
        self.state.update({
            "name": name,
            "symbol": symbol,
            "decimals": self.DECIMALS,
            "total_supply": int(supply),
            "balances": {_addr(owner): int(supply)},
            "allowances": {},
        })

    def _move(self, src: str, dst: str, amount: int) -> None:
        balances = self.state["balances"]
        require(amount >= 0, "negative amount")
        require(balances.get(src, 0) >= amount, "transfer amount exceeds balance")
        balances[src] = balances.get(src, 0) - amount
        balances[dst] = balances.get(dst, 0) + amount

    @external()
    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._move(_addr(sender), _addr(to), int(amount))
        return True

    @external()
    def approve(self, sender: str, spender: str, amount: int) -> bool:
        self.state["allowances"].setdefault(_addr(sender), {})[_addr(spender)] = int(amount)
        return True

    @external("transferFrom")
    def transfer_from(self, sender: str, src: str, dst: str, amount: int) -> bool:
        amount = int(amount)
        owner_allowances = self.state["allowances"].setdefault(_addr(src), {})
        allowed = owner_allowances.get(_addr(sender), 0)
        require(allowed >= amount, "insufficient allowance")
        self._move(_addr(src), _addr(dst), amount)
        owner_allowances[_addr(sender)] = allowed - amount
        return True

    @view("balanceOf")
    def balance_of(self, sender: str, owner: str) -> int:
        return self.state["balances"].get(_addr(owner), 0)

    @view()
    def allowance(self, sender: str, owner: str, spender: str) -> int:
        return self.state["allowances"].get(_addr(owner), {}).get(_addr(spender), 0)

    @view("totalSupply")
    def total_supply(self, sender: str) -> int:
        return self.state["total_supply"]

    @view()
    def decimals(self, sender: str) -> int:
        return self.state["decimals"]

    @view()
    def symbol(self, sender: str) -> str:
        return self.state["symbol"]


class USDCToken(ERC20):
    NAME = "USDCToken"
    DECIMALS = 6


class DemoToken(ERC20):
    NAME = "DemoToken"


class SimpleInterestRateModel(SimulatedContract):
    """Linear utilisation model: ``rate = base + util * multiplier``."""

    NAME = "SimpleInterestRateModel"

    def constructor(self, sender: str, base_rate_per_year: int, multiplier_per_year: int) -> None:
        self.state["base_rate_per_year"] = int(base_rate_per_year)
        self.state["multiplier_per_year"] = int(multiplier_per_year)

    @view("baseRatePerYear")
    def base_rate_per_year(self, sender: str) -> int:
        return self.state["base_rate_per_year"]

    @view("multiplierPerYear")
    def multiplier_per_year(self, sender: str) -> int:
        return self.state["multiplier_per_year"]

    @view("utilizationRate")
    def utilization_rate(self, sender: str, cash: int, borrows: int, reserves: int) -> int:
        if borrows == 0:
            return 0
        return borrows * MANTISSA // (cash + borrows - reserves)

    @view("getBorrowRate")
    def get_borrow_rate(self, sender: str, cash: int, borrows: int, reserves: int) -> int:
        util = self.utilization_rate(sender, cash, borrows, reserves)
        return util * self.state["multiplier_per_year"] // MANTISSA + self.state["base_rate_per_year"]


class SimplePriceOracle(SimulatedContract):
    NAME = "SimplePriceOracle"

    def constructor(self, sender: str) -> None:
        self.state["prices"] = {}

    @external("setDirectPrice")
    def set_direct_price(self, sender: str, asset: str, price: int) -> None:
        self.state["prices"][_addr(asset)] = int(price)

    @external("setUnderlyingPrice")
    def set_underlying_price(self, sender: str, a_token: str, price: int) -> None:
        underlying = self.contract_at(a_token).state["underlying"]
        self.state["prices"][underlying] = int(price)

    @view("assetPrices")
    def asset_prices(self, sender: str, asset: str) -> int:
        return self.state["prices"].get(_addr(asset), 0)

    @view("getUnderlyingPrice")
    def get_underlying_price(self, sender: str, a_token: str) -> int:
        underlying = self.contract_at(a_token).state["underlying"]
        return self.state["prices"].get(underlying, 0)


class Comptroller(SimulatedContract):
    """Risk controller; every ``_set*`` / ``_support*`` call is admin-only."""

    NAME = "Comptroller"

    def constructor(self, sender: str) -> None:
        self.state.update({
            "admin": _addr(sender),
            "oracle": "",
            "max_assets": 0,
            "close_factor": 0,
            "liquidation_incentive": 0,
            "markets": {},
            "collateral_vaults": {},
        })

    def _only_admin(self, sender: str) -> None:
        require(_addr(sender) == self.state["admin"], "only admin")

    @external("_setPriceOracle")
    def set_price_oracle(self, sender: str, oracle: str) -> None:
        self._only_admin(sender)
        self.state["oracle"] = _addr(oracle)

    @external("_setMaxAssets")
    def set_max_assets(self, sender: str, count: int) -> None:
        self._only_admin(sender)
        self.state["max_assets"] = int(count)

    @external("_setCloseFactor")
    def set_close_factor(self, sender: str, mantissa: int) -> None:
        self._only_admin(sender)
        mantissa = int(mantissa)
        require(0 < mantissa <= MANTISSA, "close factor out of range")
        self.state["close_factor"] = mantissa

    @external("_setLiquidationIncentive")
    def set_liquidation_incentive(self, sender: str, mantissa: int) -> None:
        self._only_admin(sender)
        mantissa = int(mantissa)
        require(mantissa >= MANTISSA, "liquidation incentive below 1.0")
        self.state["liquidation_incentive"] = mantissa

    @external("_supportMarket")
    def support_market(self, sender: str, a_token: str) -> None:
        self._only_admin(sender)
        key = _addr(a_token)
        require(key not in self.state["markets"], "market already listed")
        self.state["markets"][key] = {"listed": True, "collateral_factor": 0}

    @external("_setCollateralFactor")
    def set_collateral_factor(self, sender: str, a_token: str, mantissa: int) -> None:
        self._only_admin(sender)
        market = self.state["markets"].get(_addr(a_token))
        require(market is not None, "market not listed")
        market["collateral_factor"] = int(mantissa)

    @external("_supportCollateralVault")
    def support_collateral_vault(self, sender: str, vesting: str, vault: str) -> None:
        self._only_admin(sender)
        self.state["collateral_vaults"][_addr(vesting)] = _addr(vault)

    @view()
    def oracle(self, sender: str) -> str:
        return self.state["oracle"]

    @view("maxAssets")
    def max_assets(self, sender: str) -> int:
        return self.state["max_assets"]

    @view("closeFactorMantissa")
    def close_factor_mantissa(self, sender: str) -> int:
        return self.state["close_factor"]

    @view("liquidationIncentiveMantissa")
    def liquidation_incentive_mantissa(self, sender: str) -> int:
        return self.state["liquidation_incentive"]

    @view()
    def markets(self, sender: str, a_token: str) -> list[Any]:
        market = self.state["markets"].get(_addr(a_token))
        if market is None:
            return [False, 0]
        return [market["listed"], market["collateral_factor"]]

    @view("collateralVaults")
    def collateral_vaults(self, sender: str, vesting: str) -> str:
        return self.state["collateral_vaults"].get(_addr(vesting), "")


class AErc20(SimulatedContract):
    """Interest-bearing market over an ERC-20 underlying.

    ``constructor(underlying, comptroller, interest_rate_model,
    initial_exchange_rate_mantissa, name, symbol, decimals)``
    """

    NAME = "AErc20"

    def constructor(
        self,
        sender: str,
        underlying: str,
        comptroller: str,
        interest_rate_model: str,
        initial_exchange_rate_mantissa: int,
        name: str,
        symbol: str,
        decimals: int,
    ) -> None:
        rate = int(initial_exchange_rate_mantissa)
        require(rate > 0, "initial exchange rate must be positive")
        self.state.update({
            "underlying": _addr(underlying),
            "comptroller": _addr(comptroller),
            "interest_rate_model": _addr(interest_rate_model),
            "exchange_rate": rate,
            "name": name,
            "symbol": symbol,
            "decimals": int(decimals),
            "total_supply": 0,
            "balances": {},
        })

    @external()
    def mint(self, sender: str, amount: int) -> int:
        amount = int(amount)
        require(amount > 0, "mint amount is zero")
        listed, _ = self.contract_at(self.state["comptroller"]).invoke(
            self.address, "markets", [self.address], static=True
        )
        require(listed, "market not listed")
        self.contract_at(self.state["underlying"]).invoke(
            self.address, "transferFrom", [sender, self.address, amount], static=False
        )
        minted = amount * MANTISSA // self.state["exchange_rate"]
        key = _addr(sender)
        self.state["balances"][key] = self.state["balances"].get(key, 0) + minted
        self.state["total_supply"] += minted
        return minted

    @view()
    def underlying(self, sender: str) -> str:
        return self.state["underlying"]

    @view()
    def comptroller(self, sender: str) -> str:
        return self.state["comptroller"]

    @view("balanceOf")
    def balance_of(self, sender: str, owner: str) -> int:
        return self.state["balances"].get(_addr(owner), 0)

    @view("balanceOfUnderlying")
    def balance_of_underlying(self, sender: str, owner: str) -> int:
        return self.balance_of(sender, owner) * self.state["exchange_rate"] // MANTISSA

    @view("totalSupply")
    def total_supply(self, sender: str) -> int:
        return self.state["total_supply"]

    @view("getCash")
    def get_cash(self, sender: str) -> int:
        return self.contract_at(self.state["underlying"]).invoke(
            self.address, "balanceOf", [self.address], static=True
        )

    @view("exchangeRateStored")
    def exchange_rate_stored(self, sender: str) -> int:
        return self.state["exchange_rate"]


class Vesting(SimulatedContract):
    """Linear token vesting for one beneficiary, disabled until funded."""

    NAME = "Vesting"

    def constructor(
        self, sender: str, beneficiary: str, token: str, amount: int, start: int, end: int
    ) -> None:
        require(int(end) > int(start), "vesting end must be after start")
        self.state.update({
            "admin": _addr(sender),
            "beneficiary": _addr(beneficiary),
            "token": _addr(token),
            "amount": int(amount),
            "start": int(start),
            "end": int(end),
            "enabled": False,
        })

    @external()
    def enable(self, sender: str) -> None:
        require(_addr(sender) == self.state["admin"], "only admin")
        require(not self.state["enabled"], "already enabled")
        funded = self.contract_at(self.state["token"]).invoke(
            self.address, "balanceOf", [self.address], static=True
        )
        require(funded >= self.state["amount"], "vesting contract not funded")
        self.state["enabled"] = True

    @view()
    def enabled(self, sender: str) -> bool:
        return self.state["enabled"]

    @view()
    def beneficiary(self, sender: str) -> str:
        return self.state["beneficiary"]

    @view("vestedAmount")
    def vested_amount(self, sender: str, timestamp: int) -> int:
        start, end, amount = self.state["start"], self.state["end"], self.state["amount"]
        timestamp = int(timestamp)
        if timestamp <= start:
            return 0
        if timestamp >= end:
            return amount
        return amount * (timestamp - start) // (end - start)


class Vault(SimulatedContract):
    """Collateral vault wrapping a vesting position."""

    NAME = "Vault"

    def constructor(
        self, sender: str, vesting: str, discount_mantissa: int, collateral_factor_mantissa: int
    ) -> None:
        self.state.update({
            "vesting": _addr(vesting),
            "discount": int(discount_mantissa),
            "collateral_factor": int(collateral_factor_mantissa),
        })

    @view()
    def vesting(self, sender: str) -> str:
        return self.state["vesting"]

    @view("discountMantissa")
    def discount_mantissa(self, sender: str) -> int:
        return self.state["discount"]

    @view("collateralFactorMantissa")
    def collateral_factor_mantissa(self, sender: str) -> int:
        return self.state["collateral_factor"]


SIMULATED_CONTRACTS: tuple[type[SimulatedContract], ...] = (
    USDCToken,
    DemoToken,
    SimpleInterestRateModel,
    SimplePriceOracle,
    Comptroller,
    AErc20,
    Vesting,
    Vault,
)
