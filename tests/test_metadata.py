from app.schemas.metadata import (
    DepositSimulationMeta,
    SwapMeta,
    TransferMeta,
    dump_meta,
    parse_meta,
)


def test_parse_picks_model_from_kind():
    assert isinstance(parse_meta({"kind": "SWAP"}), SwapMeta)
    assert isinstance(parse_meta({"kind": "INTERMEDIATE_SWAP"}), SwapMeta)
    assert isinstance(parse_meta({"kind": "DEPOSIT_SIMULATION"}), DepositSimulationMeta)
    assert isinstance(parse_meta({}, "INTERNAL_TRANSFER"), TransferMeta)


def test_unknown_keys_survive_a_rewrite():
    raw = {
        "kind": "SWAP",
        "slippageBps": 100,
        "refreshCount": 2,
        "routeLabel": "Orca",
        "extra": {"legacy": True},
    }
    meta = parse_meta(raw)
    assert meta.slippage_bps == 100
    assert meta.refresh_count == 2
    assert meta.extra == {"legacy": True, "routeLabel": "Orca"}

    meta.refresh_count += 1
    dumped = dump_meta(meta)
    assert dumped["refreshCount"] == 3
    assert dumped["extra"]["routeLabel"] == "Orca"
    assert "routeLabel" not in dumped

    assert parse_meta(dumped).extra == meta.extra


def test_swap_meta_defaults():
    meta = parse_meta({"kind": "SWAP"})
    assert meta.slippage_bps == 50
    assert meta.escalation_count == 0
    assert meta.failure_reason is None
    assert dump_meta(meta)["kind"] == "SWAP"
