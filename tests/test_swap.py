import pytest

from app.core.config import settings
from app.core.errors import ErrorCode
from app.core.solana import RpcError, SignatureStatus
from app.utils.slippage import SlippageLadder
from app.utils.swap import SwapService
from app.utils.tokens import get_token
from tests.mocks.clients import sign, signature_of

SLIPPAGE_ERROR = "Transaction simulation failed: Error processing Instruction 3: custom program error: 0x1771"
AMOUNT = 10_000_000


@pytest.fixture
def service(solana, jupiter, submitter, ladder):
    return SwapService(solana, jupiter, settings, submitter=submitter, ladder=ladder)


@pytest.fixture
def wallet_address(wallet):
    return str(wallet.pubkey())


async def _quote(service, wallet_address, tolerance_bps=50):
    result = await service.quote(wallet_address, "USDC", "SOL", AMOUNT, tolerance_bps)
    assert result.ok, result.error
    return result.value


async def _execute(service, wallet_address, prepared, signed, with_anchor=True):
    return await service.execute(
        wallet_address,
        "USDC",
        "SOL",
        AMOUNT,
        prepared.quote.slippage_bps,
        signed,
        prepared.quote.raw,
        prepared.transaction.anchor.last_valid_block_height if with_anchor else None,
    )


@pytest.mark.asyncio
async def test_quote_builds_unsigned_transaction(service, wallet_address, jupiter):
    prepared = await _quote(service, wallet_address)

    assert prepared.quote.input_mint == get_token("USDC").mint
    assert prepared.quote.output_mint == get_token("SOL").mint
    assert prepared.transaction.anchor.last_valid_block_height == 250
    assert jupiter.quote_calls[0]["slippageBps"] == 50


@pytest.mark.asyncio
async def test_execute_confirms(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)

    result = await _execute(service, wallet_address, prepared, signed)

    assert result.ok, result.error
    assert result.value.signature == signature_of(signed)
    assert "cluster=devnet" in result.value.explorer_url


@pytest.mark.asyncio
async def test_expired_anchor_returns_rebuilt_transaction(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)

    solana.block_height = 10_000
    result = await _execute(service, wallet_address, prepared, signed)

    error = result.error
    assert error.code == ErrorCode.BLOCKHASH_EXPIRED
    assert error.status_code == 409
    assert error.retryable is True
    assert error.payload["newSlippageBps"] == 50
    assert error.payload["newQuote"]["quoteResponse"]["inputMint"] == get_token("USDC").mint
    assert error.payload["newUnsignedTransaction"] != prepared.transaction.payload
    assert error.payload["anchor"]["lastValidBlockHeight"] == 10_150
    assert solana.sent == []


@pytest.mark.asyncio
async def test_expiry_detected_from_blockhash_without_anchor(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)

    solana.block_height = 10_000
    result = await _execute(service, wallet_address, prepared, signed, with_anchor=False)

    assert result.error.code == ErrorCode.BLOCKHASH_EXPIRED
    assert solana.sent == []


@pytest.mark.asyncio
async def test_dropped_transaction_expires_without_anchor(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)
    # sent while valid, never lands, and the cluster moves past its blockhash
    solana.auto_confirm = False
    solana.blocks_per_send = 1_000

    result = await _execute(service, wallet_address, prepared, signed, with_anchor=False)

    assert len(solana.sent) == 1
    assert result.error.code == ErrorCode.BLOCKHASH_EXPIRED
    assert result.error.payload["anchor"]["lastValidBlockHeight"] == 1_250


@pytest.mark.asyncio
async def test_slippage_returns_next_tolerance(service, wallet_address, wallet, solana, jupiter):
    prepared = await _quote(service, wallet_address)
    solana.send_errors.append(RpcError("sendTransaction", SLIPPAGE_ERROR))

    result = await _execute(service, wallet_address, prepared, sign(prepared.transaction.payload, wallet))

    error = result.error
    assert error.code == ErrorCode.SLIPPAGE_EXCEEDED
    assert error.status_code == 409
    assert error.retryable is True
    assert error.payload["newSlippageBps"] == 100
    assert error.payload["newQuote"]["slippageBps"] == 100
    assert error.payload["newUnsignedTransaction"]
    assert jupiter.quote_calls[-1]["slippageBps"] == 100


@pytest.mark.asyncio
async def test_slippage_at_ceiling_is_terminal(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address, tolerance_bps=200)
    solana.send_errors.append(RpcError("sendTransaction", SLIPPAGE_ERROR))

    result = await _execute(service, wallet_address, prepared, sign(prepared.transaction.payload, wallet))

    error = result.error
    assert error.code == ErrorCode.SLIPPAGE_EXCEEDED
    assert error.status_code == 422
    assert error.retryable is False
    assert "newUnsignedTransaction" not in error.payload


@pytest.mark.asyncio
async def test_slippage_with_single_step_ladder_is_terminal(solana, jupiter, submitter, wallet, wallet_address):
    service = SwapService(solana, jupiter, settings, submitter=submitter, ladder=SlippageLadder([50], 200))
    prepared = await _quote(service, wallet_address)
    solana.send_errors.append(RpcError("sendTransaction", SLIPPAGE_ERROR))

    result = await _execute(service, wallet_address, prepared, sign(prepared.transaction.payload, wallet))

    assert result.error.code == ErrorCode.SLIPPAGE_EXCEEDED
    assert result.error.status_code == 422


@pytest.mark.asyncio
async def test_unconfirmed_is_retryable_network_error(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)
    solana.auto_confirm = False

    result = await _execute(service, wallet_address, prepared, signed)

    error = result.error
    assert error.code == ErrorCode.NETWORK_ERROR
    assert error.retryable is True
    assert error.payload["signature"] == signature_of(signed)


@pytest.mark.asyncio
async def test_onchain_failure_is_internal_error(service, wallet_address, wallet, solana):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)
    solana.statuses[signature_of(signed)] = SignatureStatus(
        confirmation_status="confirmed", err={"InstructionError": [2, "InvalidAccountData"]}
    )

    result = await _execute(service, wallet_address, prepared, signed)

    assert result.error.code == ErrorCode.INTERNAL_ERROR
    assert result.error.retryable is False


@pytest.mark.asyncio
async def test_execute_rejects_mismatched_quote(service, wallet_address, wallet):
    prepared = await _quote(service, wallet_address)
    signed = sign(prepared.transaction.payload, wallet)

    result = await service.execute(
        wallet_address, "USDC", "BTC", AMOUNT, 50, signed, prepared.quote.raw, None
    )

    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert "does not match" in result.error.message
