"""Keeps ledger rows consistent with what the chain reports.

Investments move ``pending -> confirmed | failed`` exactly once. Project and
investor aggregates change only inside the confirming transaction, with the
project row locked, so concurrent confirmations for one project serialize on
the database.
"""
import logging
from datetime import datetime
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Sum
from django.utils import timezone

from blockchain.adapter import validate_address, validate_tx_hash
from blockchain.events import InterestClaimed, InvestmentMade, MilestoneCompleted
from blockchain.exceptions import ChainReadError, ContractUnavailable
from users.models import Profile

from .exceptions import (
    DuplicateTransaction,
    IncompleteEvidence,
    InvalidTransition,
    OverclaimDetected,
    ValidationError,
)
from .models import (
    CENTS,
    TOKEN_UNITS,
    ZERO,
    ChainStatus,
    Interest,
    Investment,
    Milestone,
    MilestoneStatus,
    NotificationType,
    Project,
    ProjectStatus,
    Transaction,
    TransactionType,
)
from .notifications import notify, notify_many

logger = logging.getLogger(__name__)

NULL_ADDRESS = "0x" + "0" * 40
SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)

MILESTONE_TRANSITIONS = {
    MilestoneStatus.PENDING: {MilestoneStatus.IN_PROGRESS},
    MilestoneStatus.IN_PROGRESS: {MilestoneStatus.COMPLETED, MilestoneStatus.DELAYED, MilestoneStatus.FAILED},
    MilestoneStatus.DELAYED: {MilestoneStatus.IN_PROGRESS, MilestoneStatus.COMPLETED, MilestoneStatus.FAILED},
    MilestoneStatus.COMPLETED: set(),
    MilestoneStatus.FAILED: set(),
}


def to_decimal(value, field):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def profile_for_wallet(address):
    try:
        return Profile.objects.select_related("user").get(wallet_address__iexact=address)
    except Profile.DoesNotExist:
        return None


class Reconciler:
    def __init__(self, adapter):
        self.adapter = adapter

    # ------------------------------------------------------------ investments

    def record_investment(self, investor, project, amount, tokens_minted, tx_hash):
        """Store a client-submitted investment as ``pending``."""
        tx_hash = validate_tx_hash(tx_hash)
        amount = to_decimal(amount, "amount")
        tokens_minted = to_decimal(tokens_minted, "tokensMinted")

        if Investment.objects.filter(tx_hash=tx_hash).exists():
            raise DuplicateTransaction(f"Investment already recorded for {tx_hash}")

        investment = Investment(
            investor=investor,
            project=project,
            amount=amount,
            tokens_minted=tokens_minted,
            tx_hash=tx_hash,
            status=ChainStatus.PENDING,
        )
        try:
            investment.full_clean(validate_unique=False)
        except DjangoValidationError as e:
            raise ValidationError("; ".join(e.messages))

        try:
            with transaction.atomic():
                investment.save()
        except IntegrityError as e:
            raise DuplicateTransaction(f"Investment already recorded for {tx_hash}") from e

        logger.info("Recorded pending investment %s of %s in project %s", tx_hash, amount, project.chain_project_id)
        return investment

    def reconcile_investment(self, investment):
        """Look up the receipt and apply a terminal transition if there is one."""
        if investment.is_terminal:
            return investment
        receipt = self.adapter.verify_transaction(investment.tx_hash)
        if receipt["status"] == ChainStatus.CONFIRMED:
            return self.confirm_investment(investment, receipt)
        if receipt["status"] == ChainStatus.FAILED:
            return self.fail_investment(investment, receipt)
        logger.info("Investment %s still pending on chain", investment.tx_hash)
        return investment

    def confirm_investment(self, investment, receipt=None):
        receipt = receipt or {}
        with transaction.atomic():
            project = Project.objects.select_for_update().get(pk=investment.project_id)
            locked = Investment.objects.select_for_update().get(pk=investment.pk)
            if locked.status != ChainStatus.PENDING:
                logger.info("Investment %s already %s; confirmation ignored", locked.tx_hash, locked.status)
                return locked

            locked.status = ChainStatus.CONFIRMED
            locked.confirmed_at = timezone.now()
            locked.block_number = receipt.get("block_number", locked.block_number)
            locked.gas_used = receipt.get("gas_used") or locked.gas_used
            locked.save(update_fields=["status", "confirmed_at", "block_number", "gas_used", "updated_at"])

            totals = Investment.objects.filter(project=project, status=ChainStatus.CONFIRMED).aggregate(
                raised=Sum("amount"), investors=Count("investor", distinct=True)
            )
            project.funds_raised = totals["raised"] or ZERO
            project.investor_count = totals["investors"]
            newly_funded = project.status == ProjectStatus.ACTIVE and project.funds_raised >= project.funding_goal
            if newly_funded:
                project.status = ProjectStatus.FUNDED
            project.save(update_fields=["funds_raised", "investor_count", "status", "updated_at"])

            Profile.objects.filter(user_id=locked.investor_id).update(
                total_invested=F("total_invested") + locked.amount,
                total_tokens=F("total_tokens") + locked.tokens_minted,
            )

            self._record_transaction(
                locked.investor,
                project,
                TransactionType.INVESTMENT,
                locked.tx_hash,
                from_address=receipt.get("from") or self._wallet_of(locked.investor),
                to_address=receipt.get("to") or project.project_wallet,
                amount=locked.amount,
                token_amount=locked.tokens_minted,
                block_number=locked.block_number,
                gas_used=locked.gas_used,
                status=ChainStatus.CONFIRMED,
            )
            notify(
                locked.investor,
                NotificationType.INVESTMENT_SUCCESS,
                "Investment confirmed",
                f"Your investment of {locked.amount} in {project.name} is confirmed on chain.",
                link=f"/projects/{project.pk}",
                tx_hash=locked.tx_hash,
            )
            if newly_funded:
                notify(
                    project.manager,
                    NotificationType.PROJECT_FUNDED,
                    "Project fully funded",
                    f"{project.name} reached its funding goal of {project.funding_goal}.",
                    link=f"/projects/{project.pk}",
                )

        logger.info(
            "Confirmed investment %s: project %s raised %s from %s investors",
            locked.tx_hash, project.chain_project_id, project.funds_raised, project.investor_count,
        )
        return locked

    def fail_investment(self, investment, receipt=None):
        receipt = receipt or {}
        with transaction.atomic():
            project = Project.objects.select_for_update().get(pk=investment.project_id)
            locked = Investment.objects.select_for_update().get(pk=investment.pk)
            if locked.status != ChainStatus.PENDING:
                logger.info("Investment %s already %s; failure ignored", locked.tx_hash, locked.status)
                return locked

            locked.status = ChainStatus.FAILED
            locked.block_number = receipt.get("block_number", locked.block_number)
            locked.gas_used = receipt.get("gas_used") or locked.gas_used
            locked.save(update_fields=["status", "block_number", "gas_used", "updated_at"])

            self._record_transaction(
                locked.investor,
                project,
                TransactionType.INVESTMENT,
                locked.tx_hash,
                from_address=receipt.get("from") or self._wallet_of(locked.investor),
                to_address=receipt.get("to") or project.project_wallet,
                amount=locked.amount,
                token_amount=locked.tokens_minted,
                block_number=locked.block_number,
                gas_used=locked.gas_used,
                status=ChainStatus.FAILED,
            )
        logger.warning("Investment %s failed on chain", locked.tx_hash)
        return locked

    def reconcile_pending(self, limit=None):
        """One sweep over pending investments, oldest first."""
        counts = {"confirmed": 0, "failed": 0, "pending": 0, "errors": 0}
        pending = Investment.objects.filter(status=ChainStatus.PENDING).order_by("created_at")
        if limit is not None:
            pending = pending[:limit]
        for investment in pending:
            try:
                result = self.reconcile_investment(investment)
            except ContractUnavailable as e:
                logger.warning("Reconciliation stopped: %s", e)
                counts["errors"] += 1
                break
            except ChainReadError as e:
                logger.error("Could not verify %s: %s", investment.tx_hash, e)
                counts["errors"] += 1
                continue
            counts[result.status] += 1
        return counts

    # ------------------------------------------------------------- milestones

    def update_milestone(
        self,
        milestone,
        status=None,
        evidence_hash=None,
        verified_by=None,
        evidence_url=None,
        tx_hash=None,
        notes=None,
        enforce_transitions=True,
    ):
        """Apply a status and/or evidence update to a milestone.

        Evidence hash and verifier travel together; ``completed`` needs both.
        Chain-driven completions pass ``enforce_transitions=False`` since the
        on-chain fact wins over the off-chain workflow.
        """
        if bool(evidence_hash) != bool(verified_by):
            raise IncompleteEvidence()
        if status is not None and status not in MilestoneStatus.values:
            raise ValidationError(f"Invalid milestone status: {status}")
        if status == MilestoneStatus.COMPLETED and not (evidence_hash and verified_by):
            raise IncompleteEvidence("Completing a milestone requires evidenceHash and verifiedBy")
        if verified_by:
            verified_by = validate_address(verified_by).lower()
        if tx_hash:
            tx_hash = validate_tx_hash(tx_hash)

        with transaction.atomic():
            project = Project.objects.select_for_update().get(pk=milestone.project_id)
            locked = Milestone.objects.select_for_update().get(pk=milestone.pk)

            completing = False
            if status is not None and status != locked.status:
                allowed = MILESTONE_TRANSITIONS[locked.status]
                if not allowed or (enforce_transitions and status not in allowed):
                    raise InvalidTransition(f"Milestone cannot move from {locked.status} to {status}")
                completing = status == MilestoneStatus.COMPLETED
                locked.status = status

            if evidence_hash:
                locked.evidence_hash = evidence_hash
                locked.verified_by = verified_by
            if evidence_url is not None:
                locked.evidence_url = evidence_url
            if tx_hash:
                locked.tx_hash = tx_hash
            if notes is not None:
                locked.notes = notes

            if completing:
                locked.completed_date = timezone.now()
                project.funds_released = project.funds_released + locked.funds_to_release
                project.save(update_fields=["funds_released", "updated_at"])
                if tx_hash:
                    self._record_transaction(
                        project.manager,
                        project,
                        TransactionType.MILESTONE_COMPLETION,
                        tx_hash,
                        from_address=verified_by,
                        to_address=project.project_wallet,
                        amount=locked.funds_to_release,
                        status=ChainStatus.CONFIRMED,
                        milestone_index=locked.milestone_index,
                    )
                investor_ids = (
                    Investment.objects.filter(project=project, status=ChainStatus.CONFIRMED)
                    .values_list("investor_id", flat=True)
                    .distinct()
                )
                notify_many(
                    list(investor_ids),
                    NotificationType.MILESTONE_COMPLETED,
                    "Milestone completed",
                    f"{project.name}: milestone '{locked.name}' is complete and {locked.funds_to_release} was released.",
                    link=f"/projects/{project.pk}",
                    milestone_index=locked.milestone_index,
                )

            locked.save()

        if completing:
            logger.info(
                "Milestone %s of project %s completed; %s released",
                locked.milestone_index, project.chain_project_id, locked.funds_to_release,
            )
        return locked

    # --------------------------------------------------------------- interest

    def estimate_accrual(self, investor, project, now=None):
        """Simple interest on confirmed principal since each confirmation."""
        now = now or timezone.now()
        rate = project.interest_rate_annual / Decimal(100)
        accrued = ZERO
        confirmed = Investment.objects.filter(investor=investor, project=project, status=ChainStatus.CONFIRMED)
        for investment in confirmed:
            started = investment.confirmed_at or investment.created_at
            elapsed = Decimal(max((now - started).total_seconds(), 0))
            accrued += investment.amount * rate * elapsed / SECONDS_PER_YEAR
        return accrued.quantize(TOKEN_UNITS, rounding=ROUND_DOWN)

    def accrue_interest(self, investor, project, now=None):
        """Refresh the investor's accrual for a project and persist it."""
        now = now or timezone.now()
        wallet = self._wallet_of(investor, default=None)
        outstanding = None
        if wallet:
            try:
                outstanding = self.adapter.get_accrued_interest(wallet, project.chain_project_id)
            except ContractUnavailable as e:
                logger.info("Using off-chain accrual estimate for %s: %s", wallet, e)

        with transaction.atomic():
            interest, _ = Interest.objects.select_for_update().get_or_create(investor=investor, project=project)
            if outstanding is not None:
                candidate = interest.claimed_amount + outstanding
            else:
                candidate = self.estimate_accrual(investor, project, now)
            if candidate > interest.accrued_amount:
                interest.accrued_amount = candidate.quantize(TOKEN_UNITS, rounding=ROUND_DOWN)
            interest.pending_amount = max(interest.accrued_amount - interest.claimed_amount, ZERO)
            interest.last_accrual_date = now
            interest.save()
        return interest

    def apply_interest_claim(self, investor, project, amount, tx_hash=None, claimed_at=None):
        """Move ``amount`` from pending to claimed.

        A claim larger than the tracked pending amount is still recorded; the
        row is flagged, pending clamps to zero and ``OverclaimDetected`` is
        raised once the write has committed.
        """
        amount = to_decimal(amount, "amount").quantize(TOKEN_UNITS, rounding=ROUND_DOWN)
        if tx_hash:
            tx_hash = validate_tx_hash(tx_hash)
        overclaimed = False

        with transaction.atomic():
            interest, _ = Interest.objects.select_for_update().get_or_create(investor=investor, project=project)
            if tx_hash and Transaction.objects.filter(tx_hash=tx_hash).exists():
                logger.info("Interest claim %s already applied", tx_hash)
                return interest

            if amount > interest.pending_amount:
                overclaimed = True
                interest.overclaim_flagged = True
            interest.claimed_amount += amount
            interest.accrued_amount = max(interest.accrued_amount, interest.claimed_amount)
            interest.pending_amount = max(interest.accrued_amount - interest.claimed_amount, ZERO)
            interest.claim_count += 1
            interest.last_claim_date = claimed_at or timezone.now()
            interest.save()

            if tx_hash:
                self._record_transaction(
                    investor,
                    project,
                    TransactionType.INTEREST_CLAIM,
                    tx_hash,
                    from_address=project.project_wallet,
                    to_address=self._wallet_of(investor),
                    amount=amount,
                    status=ChainStatus.CONFIRMED,
                )

        if overclaimed:
            logger.warning(
                "Overclaim on project %s by %s: claimed %s, tracked pending was below it",
                project.chain_project_id, investor.username, amount,
            )
            raise OverclaimDetected(
                f"Claim of {amount} exceeded pending interest for project {project.chain_project_id}",
                interest=interest,
            )
        return interest

    # ----------------------------------------------------------------- events

    def handle_event(self, event):
        if isinstance(event, InvestmentMade):
            return self._on_investment_made(event)
        if isinstance(event, MilestoneCompleted):
            return self._on_milestone_completed(event)
        if isinstance(event, InterestClaimed):
            return self._on_interest_claimed(event)
        logger.warning("Ignoring unknown chain event %r", event)
        return None

    def consume(self, events):
        """Feed events to ``handle_event`` one at a time; failures are logged and dropped."""
        handled = 0
        for event in events:
            try:
                self.handle_event(event)
            except Exception:
                logger.exception("Failed to reconcile %s %s", event.name, event.tx_hash)
                continue
            handled += 1
        return handled

    def _project_for(self, chain_project_id):
        project = Project.objects.filter(chain_project_id=chain_project_id).first()
        if project is None:
            logger.info("Skipping event for unknown project %s", chain_project_id)
        return project

    def _on_investment_made(self, event):
        project = self._project_for(event.project_id)
        if project is None:
            return None

        amount = event.amount.quantize(CENTS, rounding=ROUND_DOWN)
        tokens_minted = event.tokens_minted.quantize(TOKEN_UNITS, rounding=ROUND_DOWN)
        receipt = {"block_number": event.block_number, "from": event.investor, "to": None}
        with transaction.atomic():
            investment = Investment.objects.select_for_update().filter(tx_hash=event.tx_hash).first()
            if investment is None:
                profile = profile_for_wallet(event.investor)
                if profile is None:
                    logger.info("Skipping investment from unknown wallet %s", event.investor)
                    return None
                investment = self.record_investment(profile.user, project, amount, tokens_minted, event.tx_hash)
                return self.confirm_investment(investment, receipt)

            mismatched = self._event_mismatches(investment, project, event, amount, tokens_minted)
            if not mismatched:
                return self.confirm_investment(investment, receipt)

        logger.error(
            "Investment %s disagrees with its on-chain event on %s; recorded %s, chain says %s",
            investment.tx_hash, ", ".join(mismatched), investment.amount, amount,
        )
        if investment.status == ChainStatus.PENDING:
            return self.fail_investment(investment, receipt)
        return investment

    def _event_mismatches(self, investment, project, event, amount, tokens_minted):
        mismatched = []
        if investment.project_id != project.pk:
            mismatched.append("project")
        if self._wallet_of(investment.investor, default="") != event.investor.lower():
            mismatched.append("investor")
        if investment.amount != amount:
            mismatched.append("amount")
        if investment.tokens_minted != tokens_minted:
            mismatched.append("tokens")
        return mismatched

    def _on_milestone_completed(self, event):
        project = self._project_for(event.project_id)
        if project is None:
            return None
        milestone = Milestone.objects.filter(project=project, milestone_index=event.milestone_index).first()
        if milestone is None:
            logger.info("Skipping completion of unknown milestone %s/%s", event.project_id, event.milestone_index)
            return None
        if milestone.status == MilestoneStatus.COMPLETED:
            return milestone
        return self.update_milestone(
            milestone,
            status=MilestoneStatus.COMPLETED,
            evidence_hash=event.evidence_hash,
            verified_by=event.verifier,
            tx_hash=event.tx_hash,
            enforce_transitions=False,
        )

    def _on_interest_claimed(self, event):
        project = self._project_for(event.project_id)
        if project is None:
            return None
        profile = profile_for_wallet(event.investor)
        if profile is None:
            logger.info("Skipping interest claim from unknown wallet %s", event.investor)
            return None
        claimed_at = None
        if event.timestamp:
            claimed_at = datetime.fromisoformat(event.timestamp)
        return self.apply_interest_claim(profile.user, project, event.amount, event.tx_hash, claimed_at)

    # ---------------------------------------------------------------- helpers

    def _wallet_of(self, user, default=NULL_ADDRESS):
        profile = Profile.objects.filter(user=user).first()
        if profile and profile.wallet_address:
            return profile.wallet_address
        return default

    def _record_transaction(self, user, project, type, tx_hash, from_address, to_address, amount,
                            token_amount=None, block_number=None, gas_used="", status=ChainStatus.CONFIRMED,
                            **metadata):
        row, created = Transaction.objects.get_or_create(
            tx_hash=tx_hash,
            defaults={
                "user": user,
                "project": project,
                "type": type,
                "from_address": (from_address or NULL_ADDRESS).lower(),
                "to_address": (to_address or NULL_ADDRESS).lower(),
                "amount": amount,
                "token_amount": token_amount,
                "block_number": block_number,
                "gas_used": gas_used or "",
                "status": status,
                "metadata": metadata,
            },
        )
        if not created:
            logger.info("Transaction %s already logged as %s", tx_hash, row.type)
        return row
