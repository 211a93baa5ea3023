# infrachain_backend/blockchain/adapter.py
import json
import logging
import re
import time
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from django.conf import settings
from django.utils.module_loading import import_string
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import HTTPError, ReadTimeout, Timeout
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from infrachain_backend.exceptions import ValidationError

from .events import InterestClaimed, InvestmentMade, MilestoneCompleted
from .exceptions import ChainReadError, ContractUnavailable

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")

# contract key -> ABI file under blockchain/abi
CONTRACT_ABIS = {
    "bond_token": "InfrastructureBond.json",
    "bond_issuance": "BondIssuance.json",
    "milestone_manager": "MilestoneManager.json",
    "interest_calculator": "InterestCalculator.json",
}

# (contract key, event name, signature)
EVENT_SOURCES = (
    ("bond_issuance", "InvestmentMade", "InvestmentMade(uint256,address,uint256,uint256)"),
    ("milestone_manager", "MilestoneCompleted", "MilestoneCompleted(uint256,uint256,uint256,string)"),
    ("interest_calculator", "InterestClaimed", "InterestClaimed(address,uint256,uint256,uint256)"),
)


@lru_cache(maxsize=None)
def load_abi(path):
    with open(path) as f:
        artifact = json.load(f)
    if isinstance(artifact, dict) and "abi" in artifact:
        return artifact["abi"]
    if isinstance(artifact, list):
        return artifact
    raise ValueError(f"Invalid ABI format in {path}")


def validate_address(address):
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Invalid wallet address: {address}")
    return Web3.to_checksum_address(address)


def validate_tx_hash(tx_hash):
    if not isinstance(tx_hash, str) or not TX_HASH_PATTERN.match(tx_hash):
        raise ValidationError(f"Invalid transaction hash: {tx_hash}")
    return tx_hash.lower()


def format_ether(value):
    return Decimal(Web3.from_wei(int(value), "ether"))


def as_json(value):
    """Render an adapter read (Decimals, nested dicts and lists) as JSON-safe data."""
    if isinstance(value, dict):
        return {key: as_json(item) for key, item in value.items()}
    if isinstance(value, list):
        return [as_json(item) for item in value]
    if value is None or isinstance(value, (bool, int, str)):
        return value
    return str(value)


def to_iso(unix_seconds):
    if not unix_seconds:
        return None
    return datetime.fromtimestamp(int(unix_seconds), tz=timezone.utc).isoformat()


class ChainAdapter:
    """Read-only view of the deployed bond contracts.

    Construction never touches the network. When the RPC URL or a contract
    address is missing, reads raise ``ContractUnavailable`` and
    ``subscribe_events`` does nothing.
    """

    def __init__(self, rpc_url=None, addresses=None, abi_dir=None, timeout=10, web3=None):
        self.rpc_url = (rpc_url or "").rstrip("/")
        self.addresses = {
            key: value for key, value in (addresses or {}).items()
            if value and Web3.is_address(value)
        }
        self.abi_dir = Path(abi_dir) if abi_dir else Path(__file__).resolve().parent / "abi"
        self.timeout = timeout
        self._contracts = {}

        if web3 is not None:
            self.web3 = web3
        elif self.rpc_url:
            self.web3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": timeout}))
        else:
            self.web3 = None

    @classmethod
    def from_settings(cls):
        return cls(
            rpc_url=settings.BLOCKCHAIN_RPC_URL,
            addresses=settings.CONTRACT_ADDRESSES,
            abi_dir=settings.CONTRACT_ABI_DIR,
            timeout=settings.BLOCKCHAIN_RPC_TIMEOUT,
        )

    @property
    def available(self):
        return self.web3 is not None and all(key in self.addresses for key in CONTRACT_ABIS)

    def is_connected(self):
        if self.web3 is None:
            return False
        try:
            return bool(self.web3.is_connected())
        except Exception as e:
            logger.warning("Chain connectivity check failed: %s", e)
            return False

    # ------------------------------------------------------------------ helpers

    def _require_web3(self):
        if self.web3 is None:
            raise ContractUnavailable("Blockchain RPC is not configured")
        return self.web3

    def _contract(self, key):
        w3 = self._require_web3()
        if key not in self.addresses:
            raise ContractUnavailable(f"Contract {key} is not configured")
        if key not in self._contracts:
            abi = load_abi(str(self.abi_dir / CONTRACT_ABIS[key]))
            self._contracts[key] = w3.eth.contract(
                address=Web3.to_checksum_address(self.addresses[key]), abi=abi
            )
        return self._contracts[key]

    def _read(self, description, fn, *args):
        try:
            return fn(*args)
        except (ContractUnavailable, ChainReadError, ValidationError):
            raise
        except RequestsConnectionError as e:
            logger.error("Chain node unreachable while fetching %s: %s", description, e)
            raise ContractUnavailable("Blockchain node is unreachable") from e
        except (HTTPError, ReadTimeout, Timeout) as e:
            logger.error("RPC failure while fetching %s: %s", description, e)
            raise ChainReadError(f"Failed to fetch {description}") from e
        except (Web3Exception, ValueError) as e:
            logger.error("Error fetching %s from blockchain: %s", description, e)
            raise ChainReadError(f"Failed to fetch {description}") from e

    # ------------------------------------------------------------------ reads

    def get_project(self, project_id):
        def fetch():
            project = self._contract("bond_issuance").functions.getProject(int(project_id)).call()
            return {
                "name": project[0],
                "funding_goal": format_ether(project[1]),
                "funds_raised": format_ether(project[2]),
                "funds_released": format_ether(project[3]),
                "interest_rate": Decimal(int(project[4])) / 100,
                "duration": int(project[5]),
                "is_active": bool(project[6]),
            }
        return self._read("project", fetch)

    def get_token_balance(self, address):
        checksum = validate_address(address)
        return self._read(
            "token balance",
            lambda: format_ether(self._contract("bond_token").functions.balanceOf(checksum).call()),
        )

    def get_user_investment(self, address, project_id):
        checksum = validate_address(address)
        return self._read(
            "user investment",
            lambda: format_ether(
                self._contract("bond_issuance").functions.getUserInvestment(checksum, int(project_id)).call()
            ),
        )

    def get_project_investor_count(self, project_id):
        return self._read(
            "investor count",
            lambda: int(self._contract("bond_issuance").functions.getProjectInvestorCount(int(project_id)).call()),
        )

    def get_project_milestones(self, project_id):
        def fetch():
            milestones = self._contract("milestone_manager").functions.getProjectMilestones(int(project_id)).call()
            return [
                {
                    "name": m[0],
                    "description": m[1],
                    "target_date": to_iso(m[2]),
                    "funds_to_release": format_ether(m[3]),
                    "status": int(m[4]),
                    "completed_date": to_iso(m[5]),
                    "evidence_hash": m[6],
                }
                for m in milestones
            ]
        return self._read("milestones", fetch)

    def get_accrued_interest(self, address, project_id):
        checksum = validate_address(address)
        return self._read(
            "accrued interest",
            lambda: format_ether(
                self._contract("interest_calculator").functions.calculateAccruedInterest(checksum, int(project_id)).call()
            ),
        )

    def get_current_block(self):
        return self._read("block number", lambda: int(self._require_web3().eth.block_number))

    def verify_transaction(self, tx_hash):
        """Classify a transaction by its receipt.

        No receipt yet means ``pending``; that is not an error.
        """
        tx_hash = validate_tx_hash(tx_hash)

        def fetch():
            w3 = self._require_web3()
            try:
                receipt = w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None
            if not receipt:
                return {"status": "pending", "confirmed": False}
            to_address = receipt.get("to")
            return {
                "status": "confirmed" if receipt["status"] == 1 else "failed",
                "confirmed": True,
                "block_number": receipt["blockNumber"],
                "gas_used": str(receipt["gasUsed"]),
                "from": receipt["from"].lower(),
                "to": to_address.lower() if to_address else None,
            }
        return self._read("transaction receipt", fetch)

    # ------------------------------------------------------------------ events

    def _block_timestamp(self, block_number, cache):
        if block_number not in cache:
            try:
                cache[block_number] = to_iso(self.web3.eth.get_block(block_number)["timestamp"])
            except (Web3Exception, ValueError, HTTPError, ReadTimeout) as e:
                logger.warning("Could not fetch timestamp for block %s: %s", block_number, e)
                cache[block_number] = None
        return cache[block_number]

    def _transaction_sender(self, tx_hash):
        try:
            return self.web3.eth.get_transaction(tx_hash)["from"].lower()
        except (Web3Exception, ValueError, HTTPError, ReadTimeout) as e:
            logger.warning("Could not fetch sender of %s: %s", tx_hash, e)
            return None

    def _normalize(self, event_name, decoded, raw, timestamps):
        args = decoded["args"]
        block_number = raw["blockNumber"]
        common = {
            "tx_hash": Web3.to_hex(raw["transactionHash"]).lower(),
            "block_number": block_number,
            "log_index": raw.get("logIndex", 0),
            "timestamp": self._block_timestamp(block_number, timestamps),
        }
        if event_name == "InvestmentMade":
            return InvestmentMade(
                project_id=int(args["projectId"]),
                investor=args["investor"].lower(),
                amount=format_ether(args["amount"]),
                tokens_minted=format_ether(args["tokensMinted"]),
                **common,
            )
        if event_name == "MilestoneCompleted":
            return MilestoneCompleted(
                project_id=int(args["projectId"]),
                milestone_index=int(args["milestoneIndex"]),
                funds_released=format_ether(args["fundsReleased"]),
                evidence_hash=args["evidenceHash"],
                verifier=self._transaction_sender(common["tx_hash"]),
                **common,
            )
        return InterestClaimed(
            investor=args["investor"].lower(),
            project_id=int(args["projectId"]),
            amount=format_ether(args["amount"]),
            tokens_minted=format_ether(args["tokensMinted"]),
            **common,
        )

    def poll_events(self, from_block, to_block):
        """Fetch and decode every tracked event in ``[from_block, to_block]``."""
        w3 = self._require_web3()
        events = []
        timestamps = {}
        for key, event_name, signature in EVENT_SOURCES:
            contract = self._contract(key)
            topic = Web3.to_hex(Web3.keccak(text=signature))
            raw_logs = self._read(
                f"{event_name} logs",
                w3.eth.get_logs,
                {
                    "address": contract.address,
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "topics": [topic],
                },
            )
            for raw in raw_logs:
                try:
                    decoded = getattr(contract.events, event_name)().process_log(raw)
                except Exception as e:
                    logger.error("Failed to decode %s log: %s", event_name, e)
                    continue
                events.append(self._normalize(event_name, decoded, raw, timestamps))
        events.sort(key=lambda ev: (ev.block_number, ev.log_index))
        return events

    def stream_events(self, from_block=None, poll_interval=5, batch_size=2000, max_polls=None, sleep=time.sleep,
                      on_progress=None):
        """Yield contract events as new blocks arrive.

        Starts after the current tip unless ``from_block`` is given. The
        stream ends on the first RPC failure so the caller can restart it.
        ``on_progress`` is called with the last fully scanned block: once
        when the stream starts and again after each batch has been yielded.
        """
        if not self.available:
            return
        try:
            tip = self.get_current_block()
        except (ContractUnavailable, ChainReadError) as e:
            logger.warning("Event stream could not start: %s", e)
            return
        last_seen = from_block - 1 if from_block is not None else tip
        if on_progress:
            on_progress(last_seen)

        polls = 0
        while max_polls is None or polls < max_polls:
            polls += 1
            try:
                tip = self.get_current_block()
                events = []
                scanned = last_seen
                if last_seen < tip:
                    scanned = min(last_seen + batch_size, tip)
                    events = self.poll_events(last_seen + 1, scanned)
            except (ContractUnavailable, ChainReadError) as e:
                logger.warning("Event stream stopped at block %s: %s", last_seen, e)
                return
            yield from events
            if scanned != last_seen:
                last_seen = scanned
                if on_progress:
                    on_progress(last_seen)
            if last_seen >= tip:
                sleep(poll_interval)

    def subscribe_events(self, handler, **stream_options):
        """Call ``handler`` once per event; handler errors are logged and dropped."""
        if not self.available:
            logger.info("Chain adapter unavailable; event subscription skipped")
            return 0
        handled = 0
        for event in self.stream_events(**stream_options):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s %s", event.name, event.tx_hash)
            handled += 1
        return handled


def adapter_from_settings():
    return ChainAdapter.from_settings()


def get_chain_adapter():
    """Build the adapter named by ``settings.CHAIN_ADAPTER_FACTORY``."""
    return import_string(settings.CHAIN_ADAPTER_FACTORY)()
