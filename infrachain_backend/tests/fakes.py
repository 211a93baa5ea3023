from decimal import Decimal

from blockchain.exceptions import ChainReadError, ContractUnavailable

active_adapter = None


def current_adapter():
    return active_adapter


class FakeChainAdapter:
    """In-memory stand-in for ``blockchain.adapter.ChainAdapter``."""

    rpc_url = "http://fake-node"

    def __init__(self):
        self.available = True
        self.receipts = {}
        self.projects = {}
        self.milestones = {}
        self.accrued = {}
        self.balances = {}
        self.investor_counts = {}
        self.events = []
        self.block = 100
        self.blocks_per_stream = 0
        self.stream_starts = []
        self.failures = {}
        self.verified = []

    def _check(self, method):
        if not self.available:
            raise ContractUnavailable("Blockchain RPC is not configured")
        if method in self.failures:
            raise self.failures[method]

    def confirm(self, tx_hash, block_number=50, sender=None, to=None):
        self.receipts[tx_hash.lower()] = {
            "status": "confirmed",
            "confirmed": True,
            "block_number": block_number,
            "gas_used": "21000",
            "from": sender,
            "to": to,
        }

    def fail(self, tx_hash, block_number=50):
        self.receipts[tx_hash.lower()] = {
            "status": "failed",
            "confirmed": True,
            "block_number": block_number,
            "gas_used": "21000",
            "from": None,
            "to": None,
        }

    def is_connected(self):
        return self.available

    def verify_transaction(self, tx_hash):
        self._check("verify_transaction")
        self.verified.append(tx_hash)
        return self.receipts.get(tx_hash.lower(), {"status": "pending", "confirmed": False})

    def get_project(self, project_id):
        self._check("get_project")
        if project_id not in self.projects:
            raise ChainReadError("Failed to fetch project")
        return self.projects[project_id]

    def get_project_milestones(self, project_id):
        self._check("get_project_milestones")
        return self.milestones.get(project_id, [])

    def get_accrued_interest(self, address, project_id):
        self._check("get_accrued_interest")
        return self.accrued.get((address.lower(), project_id), Decimal("0"))

    def get_project_investor_count(self, project_id):
        self._check("get_project_investor_count")
        return self.investor_counts.get(project_id, 0)

    def get_token_balance(self, address):
        self._check("get_token_balance")
        return self.balances.get(address.lower(), Decimal("0"))

    def get_user_investment(self, address, project_id):
        self._check("get_user_investment")
        return Decimal("0")

    def get_current_block(self):
        self._check("get_current_block")
        return self.block

    def poll_events(self, from_block, to_block):
        self._check("poll_events")
        return [ev for ev in self.events if from_block <= ev.block_number <= to_block]

    def stream_events(self, from_block=None, on_progress=None, **options):
        """Scan once from ``from_block`` (or after the tip) through ``block``, then end."""
        self.stream_starts.append(from_block)
        if not self.available:
            return
        start = self.block + 1 if from_block is None else from_block
        if on_progress:
            on_progress(start - 1)
        for event in self.events:
            if start <= event.block_number <= self.block:
                yield event
        if on_progress:
            on_progress(max(self.block, start - 1))
        self.block += self.blocks_per_stream
