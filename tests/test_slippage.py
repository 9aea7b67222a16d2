import pytest

from app.core.errors import ErrorCode
from app.core.solana import NATIVE_SOL_MINT
from app.utils.slippage import SlippageLadder, escalate_swap
from app.utils.tokens import get_token

USDC = get_token("USDC").mint


def test_ladder_steps_and_ceiling():
    ladder = SlippageLadder([200, 50, 100, 150, 300], 200)
    assert ladder.steps == [50, 100, 150, 200]
    assert ladder.next_step(50) == 100
    assert ladder.next_step(120) == 150
    assert ladder.next_step(200) is None
    assert ladder.allows(200)
    assert not ladder.allows(201)
    assert not ladder.allows(0)


def test_initial_tolerance_is_clamped():
    ladder = SlippageLadder([50, 100, 150, 200], 200)
    assert ladder.initial() == 50
    assert ladder.initial(75) == 75
    assert ladder.initial(500) == 200


def test_ladder_needs_a_step_within_the_ceiling():
    with pytest.raises(ValueError):
        SlippageLadder([300, 400], 200)
    with pytest.raises(ValueError):
        SlippageLadder([50], 0)


@pytest.mark.asyncio
async def test_escalation_requotes_one_step_up(solana, jupiter, ladder, wallet):
    result = await escalate_swap(
        jupiter,
        solana,
        ladder,
        input_mint=USDC,
        output_mint=NATIVE_SOL_MINT,
        amount_base_units=10_000_000,
        current_bps=50,
        wallet_address=str(wallet.pubkey()),
        ttl_seconds=30,
    )
    assert result.ok
    assert result.value.slippage_bps == 100
    assert jupiter.quote_calls[-1]["slippageBps"] == 100
    assert result.value.prepared.quote.slippage_bps == 100
    assert result.value.prepared.transaction.anchor.blockhash == solana.blockhashes[-1]


@pytest.mark.asyncio
async def test_escalation_stops_at_ceiling(solana, jupiter, ladder, wallet):
    result = await escalate_swap(
        jupiter,
        solana,
        ladder,
        input_mint=USDC,
        output_mint=NATIVE_SOL_MINT,
        amount_base_units=10_000_000,
        current_bps=200,
        wallet_address=str(wallet.pubkey()),
        ttl_seconds=30,
    )
    assert not result.ok
    assert result.error.code == ErrorCode.SLIPPAGE_EXCEEDED
    assert result.error.retryable is False
    assert jupiter.quote_calls == []


@pytest.mark.asyncio
async def test_escalation_without_route(solana, jupiter, ladder, wallet):
    jupiter.no_route = True
    result = await escalate_swap(
        jupiter,
        solana,
        ladder,
        input_mint=USDC,
        output_mint=NATIVE_SOL_MINT,
        amount_base_units=10_000_000,
        current_bps=100,
        wallet_address=str(wallet.pubkey()),
        ttl_seconds=30,
    )
    assert result.error.code == ErrorCode.NO_ROUTE
