# infrachain_backend/blockchain/management/commands/listen_events.py
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from blockchain.adapter import get_chain_adapter
from projects.reconciliation import Reconciler


class Command(BaseCommand):
    help = "Follow bond contract events and reconcile them into the database"

    def add_arguments(self, parser):
        parser.add_argument("--from-block", type=int, default=None,
                            help="First block to scan (default: after the current tip)")
        parser.add_argument("--max-restarts", type=int, default=None,
                            help="Give up after this many stream restarts")

    def handle(self, *args, **options):
        adapter = get_chain_adapter()
        if not adapter.available:
            self.stderr.write("❌ Chain adapter is not configured (BLOCKCHAIN_RPC_URL / contract addresses)")
            return
        if not adapter.is_connected():
            self.stderr.write(f"❌ Cannot connect to {adapter.rpc_url}")
            return
        self.stdout.write(f"🔗 Connected to {adapter.rpc_url}")

        reconciler = Reconciler(adapter)
        next_block = options["from_block"]
        restarts = 0

        def scanned_through(block):
            nonlocal next_block
            next_block = block + 1

        while True:
            start = "current tip" if next_block is None else f"block {next_block}"
            self.stdout.write(f"▶️ Watching bond contracts from {start}")
            stream = adapter.stream_events(
                from_block=next_block,
                poll_interval=settings.POLL_INTERVAL,
                batch_size=settings.BATCH_SIZE,
                on_progress=scanned_through,
            )
            for event in stream:
                try:
                    reconciler.handle_event(event)
                except Exception as e:
                    self.stderr.write(f"❌ Failed to reconcile {event.name} {event.tx_hash}: {e}")
                else:
                    self.stdout.write(f"✅ {event.name} in block {event.block_number} (tx {event.tx_hash})")

            restarts += 1
            if options["max_restarts"] is not None and restarts > options["max_restarts"]:
                self.stderr.write("⚠️ Event stream keeps failing; giving up")
                return
            self.stderr.write(f"⚠️ Event stream stopped; restarting in {settings.POLL_INTERVAL}s")
            time.sleep(settings.POLL_INTERVAL)
