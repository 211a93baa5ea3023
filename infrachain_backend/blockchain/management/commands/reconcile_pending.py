# infrachain_backend/blockchain/management/commands/reconcile_pending.py
from django.core.management.base import BaseCommand

from blockchain.adapter import get_chain_adapter
from projects.reconciliation import Reconciler


class Command(BaseCommand):
    help = "Check pending investments against their on-chain receipts"

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=None, help="Maximum investments to check")

    def handle(self, *args, **options):
        adapter = get_chain_adapter()
        if not adapter.available:
            self.stderr.write("❌ Chain adapter is not configured; nothing reconciled")
            return

        counts = Reconciler(adapter).reconcile_pending(limit=options["limit"])
        self.stdout.write(
            f"✅ confirmed={counts['confirmed']} failed={counts['failed']} "
            f"pending={counts['pending']} errors={counts['errors']}"
        )
