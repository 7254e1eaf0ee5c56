"""Lending-protocol deployment plan.

Eight units: two ERC-20 tokens, an interest rate model, a price oracle, a
comptroller, an interest-bearing USDC market, a vesting contract and a
collateral vault.  Each post-deployment call is an ``Action`` whose
predicate reads on-chain state, so a re-run only sends what is missing.

Unit ids double as the contract names and as tags; the extra group tags
``tokens``, ``core``, ``markets`` and ``vesting`` select slices of the plan.

Use ``build_plan()`` as the plan entry point (``deployplan.plans.lending:build_plan``).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict

from deployplan.core.context import DeployContext
from deployplan.core.graph import DeploymentGraph
from deployplan.models.units import Action, DeploymentUnit, UnitDescription
from deployplan.plans.lending_contracts import SIMULATED_CONTRACTS

__all__ = ["LendingParams", "SIMULATED_CONTRACTS", "build_plan"]

USDC_TOKEN = "USDCToken"
DEMO_TOKEN = "DemoToken"
INTEREST_RATE_MODEL = "SimpleInterestRateModel"
PRICE_ORACLE = "SimplePriceOracle"
COMPTROLLER = "Comptroller"
A_TOKEN = "AErc20"
VESTING = "Vesting"
VAULT = "Vault"

RECIPIENTS = ("lender", "borrower1", "borrower2")


def _units(amount: int, decimals: int) -> int:
    return amount * 10**decimals


class LendingParams(BaseModel):
    """Constructor arguments and configuration values of the lending plan.

    Amounts are integers in base units.  The vesting window is fixed here
    rather than read from the clock so that the declaration fingerprints
    the same way on every run.
    """

    model_config = ConfigDict(frozen=True)

    code_revision: str = "1"

    usdc_supply: int = _units(1_000_000_000, 6)
    usdc_grant: int = _units(100_000, 6)
    demo_supply: int = _units(1_000_000_000, 18)
    demo_grant: int = _units(100, 18)

    base_rate_per_year: int = 50_000_000_000_000_000
    multiplier_per_year: int = 150_000_000_000_000_000

    demo_price: int = _units(1, 18)
    usdc_price: int = 300_000_000_000_000  # 0.0003 * 1e18

    max_assets: int = 10
    close_factor: int = 500_000_000_000_000_000
    liquidation_incentive: int = 1_080_000_000_000_000_000

    initial_exchange_rate: int = 200_000_000_000_000
    market_name: str = "Acai USDC"
    market_symbol: str = "aUSDC"
    market_decimals: int = 6
    market_collateral_factor: int = 0
    market_approval: int = _units(10_000_000, 6)
    market_supply: int = 3_000_000_000_000

    vesting_amount: int = _units(100, 18)
    vesting_start: int = 1_700_000_000
    vesting_duration: int = 86_400

    vault_discount: int = 500_000_000_000_000_000
    vault_collateral_factor: int = 500_000_000_000_000_000

    def code(self, contract: str) -> str:
        """Code identity of a contract at this plan's revision."""
        return f"{contract}@{self.code_revision}"


# ---------------------------------------------------------------------------
# Action helpers
# ---------------------------------------------------------------------------


def _send(
    name: str,
    target: str,
    method: str,
    args: Callable[[DeployContext], list[Any]],
    check: Callable[[DeployContext], bool],
) -> Action:
    """Action sending ``target.method(*args(ctx))`` until ``check(ctx)`` holds."""
    return Action(
        name=name,
        description=f"{target}.{method}",
        predicate=check,
        apply=lambda ctx: ctx.transact(target, method, *args(ctx)),
    )


def _same(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def _grant(token: str, role: str, amount: int) -> Action:
    return _send(
        f"transfer:{role}",
        token,
        "transfer",
        lambda ctx: [ctx.account(role), amount],
        lambda ctx: ctx.call(token, "balanceOf", ctx.account(role)) >= amount,
    )


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


def _token_unit(unit_id: str, supply: int, name: str, symbol: str, grant: int, p: LendingParams) -> DeploymentUnit:
    return DeploymentUnit(
        id=unit_id,
        tags=(unit_id, "tokens"),
        describe=lambda ctx: UnitDescription(
            contract=unit_id,
            code=p.code(unit_id),
            args=[ctx.account("deployer"), supply, name, symbol],
            deterministic=True,
        ),
        actions=tuple(_grant(unit_id, role, grant) for role in RECIPIENTS),
    )


def _interest_rate_model(p: LendingParams) -> DeploymentUnit:
    return DeploymentUnit(
        id=INTEREST_RATE_MODEL,
        tags=(INTEREST_RATE_MODEL, "core"),
        dependencies=(DEMO_TOKEN,),
        describe=lambda ctx: UnitDescription(
            contract=INTEREST_RATE_MODEL,
            code=p.code(INTEREST_RATE_MODEL),
            args=[p.base_rate_per_year, p.multiplier_per_year],
        ),
    )


def _price_oracle(p: LendingParams) -> DeploymentUnit:
    def direct_price(token: str, price: int) -> Action:
        return _send(
            f"setDirectPrice:{token}",
            PRICE_ORACLE,
            "setDirectPrice",
            lambda ctx: [ctx.address(token), price],
            lambda ctx: ctx.call(PRICE_ORACLE, "assetPrices", ctx.address(token)) == price,
        )

    return DeploymentUnit(
        id=PRICE_ORACLE,
        tags=(PRICE_ORACLE, "core"),
        dependencies=(DEMO_TOKEN, USDC_TOKEN),
        describe=lambda ctx: UnitDescription(
            contract=PRICE_ORACLE, code=p.code(PRICE_ORACLE)
        ),
        actions=(
            direct_price(DEMO_TOKEN, p.demo_price),
            direct_price(USDC_TOKEN, p.usdc_price),
        ),
    )


def _comptroller(p: LendingParams) -> DeploymentUnit:
    def setting(method: str, getter: str, value: int) -> Action:
        return _send(
            method,
            COMPTROLLER,
            method,
            lambda ctx: [value],
            lambda ctx: ctx.call(COMPTROLLER, getter) == value,
        )

    return DeploymentUnit(
        id=COMPTROLLER,
        tags=(COMPTROLLER, "core"),
        dependencies=(PRICE_ORACLE,),
        describe=lambda ctx: UnitDescription(
            contract=COMPTROLLER, code=p.code(COMPTROLLER)
        ),
        actions=(
            _send(
                "_setPriceOracle",
                COMPTROLLER,
                "_setPriceOracle",
                lambda ctx: [ctx.address(PRICE_ORACLE)],
                lambda ctx: _same(ctx.call(COMPTROLLER, "oracle"), ctx.address(PRICE_ORACLE)),
            ),
            setting("_setMaxAssets", "maxAssets", p.max_assets),
            setting("_setCloseFactor", "closeFactorMantissa", p.close_factor),
            setting(
                "_setLiquidationIncentive",
                "liquidationIncentiveMantissa",
                p.liquidation_incentive,
            ),
        ),
    )


def _market(p: LendingParams) -> DeploymentUnit:
    def market(ctx: DeployContext) -> list[Any]:
        return ctx.call(COMPTROLLER, "markets", ctx.address(A_TOKEN))

    def supplied(ctx: DeployContext) -> int:
        return ctx.call(A_TOKEN, "balanceOfUnderlying", ctx.account("deployer"))

    def approved(ctx: DeployContext) -> bool:
        # mint spends the allowance, so count what was already supplied
        allowance = ctx.call(
            USDC_TOKEN, "allowance", ctx.account("deployer"), ctx.address(A_TOKEN)
        )
        return allowance + supplied(ctx) >= p.market_approval

    return DeploymentUnit(
        id=A_TOKEN,
        tags=(A_TOKEN, "markets"),
        dependencies=(PRICE_ORACLE, INTEREST_RATE_MODEL, COMPTROLLER, USDC_TOKEN),
        describe=lambda ctx: UnitDescription(
            contract=A_TOKEN,
            code=p.code(A_TOKEN),
            args=[
                ctx.address(USDC_TOKEN),
                ctx.address(COMPTROLLER),
                ctx.address(INTEREST_RATE_MODEL),
                p.initial_exchange_rate,
                p.market_name,
                p.market_symbol,
                p.market_decimals,
            ],
            deterministic=True,
        ),
        actions=(
            _send(
                "_supportMarket",
                COMPTROLLER,
                "_supportMarket",
                lambda ctx: [ctx.address(A_TOKEN)],
                lambda ctx: bool(market(ctx)[0]),
            ),
            _send(
                "setUnderlyingPrice",
                PRICE_ORACLE,
                "setUnderlyingPrice",
                lambda ctx: [ctx.address(A_TOKEN), p.usdc_price],
                lambda ctx: ctx.call(
                    PRICE_ORACLE, "getUnderlyingPrice", ctx.address(A_TOKEN)
                ) == p.usdc_price,
            ),
            _send(
                "_setCollateralFactor",
                COMPTROLLER,
                "_setCollateralFactor",
                lambda ctx: [ctx.address(A_TOKEN), p.market_collateral_factor],
                lambda ctx: market(ctx) == [True, p.market_collateral_factor],
            ),
            _send(
                "approve",
                USDC_TOKEN,
                "approve",
                lambda ctx: [ctx.address(A_TOKEN), p.market_approval],
                approved,
            ),
            _send(
                "mint",
                A_TOKEN,
                "mint",
                lambda ctx: [p.market_supply],
                lambda ctx: supplied(ctx) >= p.market_supply,
            ),
        ),
    )


def _vesting(p: LendingParams) -> DeploymentUnit:
    return DeploymentUnit(
        id=VESTING,
        tags=(VESTING, "vesting"),
        dependencies=(PRICE_ORACLE, COMPTROLLER, DEMO_TOKEN, USDC_TOKEN),
        describe=lambda ctx: UnitDescription(
            contract=VESTING,
            code=p.code(VESTING),
            args=[
                ctx.account("borrower1"),
                ctx.address(DEMO_TOKEN),
                p.vesting_amount,
                p.vesting_start,
                p.vesting_start + p.vesting_duration,
            ],
        ),
        actions=(
            _send(
                "fund",
                DEMO_TOKEN,
                "transfer",
                lambda ctx: [ctx.address(VESTING), p.vesting_amount],
                lambda ctx: ctx.call(
                    DEMO_TOKEN, "balanceOf", ctx.address(VESTING)
                ) >= p.vesting_amount,
            ),
            _send(
                "enable",
                VESTING,
                "enable",
                lambda ctx: [],
                lambda ctx: bool(ctx.call(VESTING, "enabled")),
            ),
        ),
    )


def _vault(p: LendingParams) -> DeploymentUnit:
    return DeploymentUnit(
        id=VAULT,
        tags=(VAULT, "vesting"),
        dependencies=(COMPTROLLER, VESTING),
        describe=lambda ctx: UnitDescription(
            contract=VAULT,
            code=p.code(VAULT),
            args=[ctx.address(VESTING), p.vault_discount, p.vault_collateral_factor],
        ),
        actions=(
            _send(
                "_supportCollateralVault",
                COMPTROLLER,
                "_supportCollateralVault",
                lambda ctx: [ctx.address(VESTING), ctx.address(VAULT)],
                lambda ctx: _same(
                    ctx.call(COMPTROLLER, "collateralVaults", ctx.address(VESTING)),
                    ctx.address(VAULT),
                ),
            ),
        ),
    )


def build_plan(params: LendingParams | None = None, **overrides: Any) -> DeploymentGraph:
    """Build the lending deployment graph.

    Keyword ``overrides`` replace individual ``LendingParams`` fields.
    Units are registered alphabetically, which decides the order wherever
    dependencies do not.
    """
    p = params or LendingParams()
    if overrides:
        p = p.model_copy(update=overrides)

    graph = DeploymentGraph()
    graph.register(_market(p))
    graph.register(_comptroller(p))
    graph.register(_token_unit(DEMO_TOKEN, p.demo_supply, "Demo Token", "DEMO", p.demo_grant, p))
    graph.register(_interest_rate_model(p))
    graph.register(_price_oracle(p))
    graph.register(_token_unit(USDC_TOKEN, p.usdc_supply, "USD Coin", "USDC", p.usdc_grant, p))
    graph.register(_vault(p))
    graph.register(_vesting(p))
    return graph
