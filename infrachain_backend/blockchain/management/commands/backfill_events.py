# infrachain_backend/blockchain/management/commands/backfill_events.py
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from blockchain.adapter import get_chain_adapter
from blockchain.exceptions import ChainReadError, ContractUnavailable
from projects.reconciliation import Reconciler


class Command(BaseCommand):
    help = "Scan a block range for bond contract events and reconcile them"

    def add_arguments(self, parser):
        parser.add_argument("--from-block", type=int, required=True)
        parser.add_argument("--to-block", type=int, default=None, help="Last block to scan (default: chain tip)")
        parser.add_argument("--batch-size", type=int, default=None)

    def handle(self, *args, **options):
        adapter = get_chain_adapter()
        if not adapter.available:
            raise CommandError("Chain adapter is not configured (BLOCKCHAIN_RPC_URL / contract addresses)")

        try:
            latest = options["to_block"] if options["to_block"] is not None else adapter.get_current_block()
        except (ContractUnavailable, ChainReadError) as e:
            raise CommandError(f"Could not read chain tip: {e}")
        self.stdout.write(f"🔗 Connected to {adapter.rpc_url}; scanning up to block {latest}")

        reconciler = Reconciler(adapter)
        batch_size = options["batch_size"] or settings.BATCH_SIZE
        current = options["from_block"]
        handled = 0

        while current <= latest:
            end = min(current + batch_size - 1, latest)
            self.stdout.write(f"⏱ Scanning blocks {current} → {end}")
            try:
                events = adapter.poll_events(current, end)
            except ContractUnavailable as e:
                raise CommandError(f"Chain became unavailable at block {current}: {e}")
            except ChainReadError as e:
                self.stderr.write(f"  ⚠️ RPC failure on {current}–{end}: {e}")
                if batch_size > 1:
                    batch_size = max(1, batch_size // 2)
                    self.stdout.write(f"    ↘ New batch_size: {batch_size}")
                else:
                    self.stderr.write(f"    ↘ Skipping block {current}")
                    current += 1
                continue

            self.stdout.write(f"  📝 {len(events)} events")
            handled += reconciler.consume(events)
            current = end + 1

        self.stdout.write(f"\n✅ Backfill complete: {handled} events reconciled.")
