import json
from decimal import Decimal
from unittest.mock import MagicMock, PropertyMock

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import ReadTimeout
from web3 import Web3
from web3.exceptions import TransactionNotFound

from blockchain.adapter import EVENT_SOURCES, ChainAdapter, get_chain_adapter, load_abi
from blockchain.events import InvestmentMade
from blockchain.exceptions import ChainReadError, ContractUnavailable
from infrachain_backend.exceptions import ValidationError

ADDRESSES = {
    "bond_token": "0x" + "1" * 40,
    "bond_issuance": "0x" + "2" * 40,
    "milestone_manager": "0x" + "3" * 40,
    "interest_calculator": "0x" + "4" * 40,
}
TX = "0x" + "ab" * 32
WEI = 10 ** 18


@pytest.fixture
def w3():
    return MagicMock()


@pytest.fixture
def adapter(w3):
    return ChainAdapter(addresses=ADDRESSES, web3=w3)


def test_unconfigured_adapter_is_unavailable():
    adapter = ChainAdapter()
    assert not adapter.available
    assert not adapter.is_connected()
    with pytest.raises(ContractUnavailable):
        adapter.get_project(1)


def test_missing_contract_address_makes_adapter_unavailable(w3):
    adapter = ChainAdapter(addresses={**ADDRESSES, "interest_calculator": "not-an-address"}, web3=w3)
    assert not adapter.available
    with pytest.raises(ContractUnavailable):
        adapter.get_accrued_interest("0x" + "5" * 40, 1)


def test_subscribe_is_a_no_op_when_unavailable():
    handler = MagicMock()
    assert ChainAdapter().subscribe_events(handler) == 0
    handler.assert_not_called()


def test_verify_transaction_without_receipt_is_pending(adapter, w3):
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not yet mined")
    assert adapter.verify_transaction(TX) == {"status": "pending", "confirmed": False}


def test_verify_transaction_confirmed_receipt(adapter, w3):
    w3.eth.get_transaction_receipt.return_value = {
        "status": 1,
        "blockNumber": 1234,
        "gasUsed": 52000,
        "from": "0xAbCdEf0000000000000000000000000000000001",
        "to": "0x00000000000000000000000000000000000000Ff",
    }

    result = adapter.verify_transaction(TX.upper().replace("0X", "0x"))

    w3.eth.get_transaction_receipt.assert_called_once_with(TX)
    assert result == {
        "status": "confirmed",
        "confirmed": True,
        "block_number": 1234,
        "gas_used": "52000",
        "from": "0xabcdef0000000000000000000000000000000001",
        "to": "0x00000000000000000000000000000000000000ff",
    }


def test_verify_transaction_reverted_receipt(adapter, w3):
    w3.eth.get_transaction_receipt.return_value = {
        "status": 0, "blockNumber": 9, "gasUsed": 1, "from": ADDRESSES["bond_token"], "to": None,
    }
    result = adapter.verify_transaction(TX)
    assert result["status"] == "failed"
    assert result["to"] is None


def test_verify_transaction_rejects_malformed_hash(adapter):
    with pytest.raises(ValidationError):
        adapter.verify_transaction("0x1234")


def test_unreachable_node_maps_to_contract_unavailable(adapter, w3):
    w3.eth.get_transaction_receipt.side_effect = RequestsConnectionError("refused")
    with pytest.raises(ContractUnavailable):
        adapter.verify_transaction(TX)


def test_rpc_timeout_maps_to_chain_read_error(adapter, w3):
    w3.eth.get_transaction_receipt.side_effect = ReadTimeout("slow node")
    with pytest.raises(ChainReadError):
        adapter.verify_transaction(TX)


def test_contract_revert_maps_to_chain_read_error(adapter, w3):
    w3.eth.contract.return_value.functions.getProject.return_value.call.side_effect = ValueError("execution reverted")
    with pytest.raises(ChainReadError):
        adapter.get_project(7)


def test_get_project_converts_units(adapter, w3):
    w3.eth.contract.return_value.functions.getProject.return_value.call.return_value = (
        "Lagos Light Rail", 1000 * WEI, 250 * WEI, 0, 850, 24, True,
    )

    project = adapter.get_project(1)

    assert project == {
        "name": "Lagos Light Rail",
        "funding_goal": Decimal("1000"),
        "funds_raised": Decimal("250"),
        "funds_released": Decimal("0"),
        "interest_rate": Decimal("8.5"),
        "duration": 24,
        "is_active": True,
    }


def test_get_project_milestones_formats_dates(adapter, w3):
    w3.eth.contract.return_value.functions.getProjectMilestones.return_value.call.return_value = [
        ("Phase 1", "Earthworks", 1767225600, 100 * WEI, 2, 0, "QmEvidence"),
    ]

    (milestone,) = adapter.get_project_milestones(1)

    assert milestone["target_date"] == "2026-01-01T00:00:00+00:00"
    assert milestone["completed_date"] is None
    assert milestone["funds_to_release"] == Decimal("100")


def test_get_project_investor_count(adapter, w3):
    w3.eth.contract.return_value.functions.getProjectInvestorCount.return_value.call.return_value = 3
    assert adapter.get_project_investor_count(1) == 3


def test_token_balance_validates_address(adapter):
    with pytest.raises(ValidationError):
        adapter.get_token_balance("0xnothex")


def test_poll_events_decodes_and_normalizes(adapter, w3):
    investment_topic = Web3.to_hex(Web3.keccak(text=EVENT_SOURCES[0][2]))
    raw = {"transactionHash": bytes.fromhex("ab" * 32), "blockNumber": 7, "logIndex": 2}

    def get_logs(params):
        return [raw] if params["topics"] == [investment_topic] else []

    w3.eth.get_logs.side_effect = get_logs
    w3.eth.get_block.return_value = {"timestamp": 1767225600}
    contract = w3.eth.contract.return_value
    contract.events.InvestmentMade.return_value.process_log.return_value = {
        "args": {
            "projectId": 3,
            "investor": "0xAbCdEf0000000000000000000000000000000001",
            "amount": 5 * WEI,
            "tokensMinted": 5 * WEI,
        }
    }

    events = adapter.poll_events(1, 10)

    assert events == [
        InvestmentMade(
            tx_hash=TX,
            block_number=7,
            log_index=2,
            timestamp="2026-01-01T00:00:00+00:00",
            project_id=3,
            investor="0xabcdef0000000000000000000000000000000001",
            amount=Decimal("5"),
            tokens_minted=Decimal("5"),
        )
    ]


def test_poll_events_skips_undecodable_logs(adapter, w3):
    w3.eth.get_logs.return_value = [{"transactionHash": b"\x01" * 32, "blockNumber": 1, "logIndex": 0}]
    contract = w3.eth.contract.return_value
    for _, name, _ in EVENT_SOURCES:
        getattr(contract.events, name).return_value.process_log.side_effect = ValueError("bad log")

    assert adapter.poll_events(1, 1) == []


def test_stream_events_walks_blocks_in_batches(adapter, w3):
    w3.eth.block_number = 10
    calls = []
    adapter.poll_events = lambda start, end: calls.append((start, end)) or []
    sleeps = []

    list(adapter.stream_events(from_block=5, batch_size=3, max_polls=2, sleep=sleeps.append, poll_interval=9))

    assert calls == [(5, 7), (8, 10)]
    assert sleeps == [9]


def test_stream_events_ends_on_rpc_failure(adapter, w3):
    w3.eth.block_number = 10

    def broken(start, end):
        raise ChainReadError("node fell over")

    adapter.poll_events = broken
    assert list(adapter.stream_events(from_block=1, max_polls=5, sleep=lambda s: None)) == []


def test_stream_events_reports_scanned_blocks_before_failing(adapter, w3):
    type(w3.eth).block_number = PropertyMock(side_effect=[100, 110, ReadTimeout("node stalled")])
    scanned = []
    adapter.poll_events = lambda start, end: scanned.append((start, end)) or []
    progress = []

    list(adapter.stream_events(on_progress=progress.append, sleep=lambda s: None))

    assert scanned == [(101, 110)]
    assert progress == [100, 110]


def test_subscribe_swallows_handler_errors(adapter):
    events = [MagicMock(name="first"), MagicMock(name="second")]
    adapter.stream_events = lambda **options: iter(events)
    seen = []

    def handler(event):
        seen.append(event)
        if event is events[0]:
            raise RuntimeError("handler bug")

    assert adapter.subscribe_events(handler) == 2
    assert seen == events


def test_load_abi_accepts_artifact_and_bare_list(tmp_path):
    entry = {"type": "function", "name": "totalSupply", "inputs": [], "outputs": []}
    artifact = tmp_path / "artifact.json"
    artifact.write_text(json.dumps({"contractName": "X", "abi": [entry]}))
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([entry]))

    assert load_abi(str(artifact)) == [entry]
    assert load_abi(str(bare)) == [entry]


def test_get_chain_adapter_uses_configured_factory(settings):
    settings.CHAIN_ADAPTER_FACTORY = "blockchain.adapter.adapter_from_settings"
    settings.BLOCKCHAIN_RPC_URL = ""
    adapter = get_chain_adapter()
    assert isinstance(adapter, ChainAdapter)
    assert not adapter.available
