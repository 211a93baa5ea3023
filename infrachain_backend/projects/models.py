import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models

TX_HASH_RE = r"^0x[a-fA-F0-9]{64}$"
ADDRESS_RE = r"^0x[a-fA-F0-9]{40}$"

tx_hash_validator = RegexValidator(TX_HASH_RE, "Invalid transaction hash")
address_validator = RegexValidator(ADDRESS_RE, "Invalid wallet address")

ZERO = Decimal("0")
CENTS = Decimal("0.01")
TOKEN_UNITS = Decimal("0.00000001")


def default_sdg_goals():
    # SDG 9: industry, innovation and infrastructure
    return [9]


class ProjectCategory(models.TextChoices):
    TRANSPORT = "transport", "Transport"
    ENERGY = "energy", "Energy"
    WATER = "water", "Water"
    TELECOM = "telecom", "Telecom"
    SOCIAL = "social", "Social"
    MIXED = "mixed", "Mixed"


class ProjectStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    ACTIVE = "active", "Active"
    FUNDED = "funded", "Funded"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class ChainStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    FAILED = "failed", "Failed"


class MilestoneStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"
    DELAYED = "delayed", "Delayed"
    FAILED = "failed", "Failed"


class TransactionType(models.TextChoices):
    INVESTMENT = "investment", "Investment"
    INTEREST_CLAIM = "interest_claim", "Interest claim"
    MILESTONE_COMPLETION = "milestone_completion", "Milestone completion"
    FUND_RELEASE = "fund_release", "Fund release"
    TOKEN_TRANSFER = "token_transfer", "Token transfer"


class NotificationType(models.TextChoices):
    INVESTMENT_SUCCESS = "investment_success", "Investment success"
    MILESTONE_COMPLETED = "milestone_completed", "Milestone completed"
    INTEREST_AVAILABLE = "interest_available", "Interest available"
    PROJECT_FUNDED = "project_funded", "Project funded"
    KYC_APPROVED = "kyc_approved", "KYC approved"
    KYC_REJECTED = "kyc_rejected", "KYC rejected"
    GENERAL = "general", "General"


class Project(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    chain_project_id = models.PositiveIntegerField(unique=True)
    name = models.CharField(max_length=200)
    description = models.TextField()
    category = models.CharField(max_length=20, choices=ProjectCategory.choices, db_index=True)
    location = models.CharField(max_length=200)
    funding_goal = models.DecimalField(max_digits=20, decimal_places=2, validators=[MinValueValidator(ZERO)])
    # derived from confirmed investments only
    funds_raised = models.DecimalField(max_digits=20, decimal_places=2, default=ZERO)
    funds_released = models.DecimalField(max_digits=20, decimal_places=2, default=ZERO)
    interest_rate_annual = models.DecimalField(max_digits=5, decimal_places=2)  # percent, e.g. 8.50
    duration_months = models.PositiveIntegerField()
    project_wallet = models.CharField(max_length=42, validators=[address_validator])
    manager = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="managed_projects")
    status = models.CharField(max_length=20, choices=ProjectStatus.choices, default=ProjectStatus.DRAFT, db_index=True)
    investor_count = models.PositiveIntegerField(default=0)
    images = models.JSONField(default=list, blank=True)
    documents = models.JSONField(default=dict, blank=True)
    sdg_goals = models.JSONField(default=default_sdg_goals, blank=True)
    start_date = models.DateTimeField(null=True, blank=True)
    expected_end_date = models.DateTimeField(null=True, blank=True)
    actual_end_date = models.DateTimeField(null=True, blank=True)
    contract_address = models.CharField(max_length=42, blank=True, default="")
    tx_hash = models.CharField(max_length=66, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} (#{self.chain_project_id})"


class Investment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    investor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="investments")
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="investments")
    amount = models.DecimalField(max_digits=20, decimal_places=2, validators=[MinValueValidator(ZERO)])
    tokens_minted = models.DecimalField(max_digits=30, decimal_places=8)
    tx_hash = models.CharField(max_length=66, unique=True, validators=[tx_hash_validator])
    block_number = models.BigIntegerField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=ChainStatus.choices, default=ChainStatus.PENDING, db_index=True)
    gas_used = models.CharField(max_length=40, blank=True, default="")
    confirmed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.investor.username} invested {self.amount} in {self.project.name} ({self.status})"

    @property
    def is_terminal(self):
        return self.status != ChainStatus.PENDING


class Milestone(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="milestones")
    # index in the on-chain milestone array
    milestone_index = models.PositiveIntegerField(db_index=True)
    name = models.CharField(max_length=200)
    description = models.TextField()
    target_date = models.DateTimeField(db_index=True)
    funds_to_release = models.DecimalField(max_digits=20, decimal_places=2)
    status = models.CharField(max_length=20, choices=MilestoneStatus.choices, default=MilestoneStatus.PENDING, db_index=True)
    completed_date = models.DateTimeField(null=True, blank=True)
    evidence_hash = models.CharField(max_length=200, blank=True, default="")
    evidence_url = models.CharField(max_length=500, blank=True, default="")
    verified_by = models.CharField(max_length=42, blank=True, default="", validators=[address_validator])
    tx_hash = models.CharField(max_length=66, blank=True, default="", validators=[tx_hash_validator])
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["milestone_index"]
        constraints = [
            models.UniqueConstraint(fields=["project", "milestone_index"], name="unique_milestone_index_per_project"),
        ]

    def __str__(self):
        return f"{self.project.name} milestone {self.milestone_index}: {self.name}"

    def clean(self):
        if self.status == MilestoneStatus.COMPLETED:
            missing = {}
            if not self.evidence_hash:
                missing["evidence_hash"] = "A completed milestone needs evidence."
            if not self.verified_by:
                missing["verified_by"] = "A completed milestone needs a verifier."
            if missing:
                raise ValidationError(missing)


class Interest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    investor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="interests")
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="interests")
    accrued_amount = models.DecimalField(max_digits=30, decimal_places=8, default=ZERO)
    claimed_amount = models.DecimalField(max_digits=30, decimal_places=8, default=ZERO)
    # always accrued_amount - claimed_amount, never negative
    pending_amount = models.DecimalField(max_digits=30, decimal_places=8, default=ZERO)
    last_accrual_date = models.DateTimeField(null=True, blank=True, db_index=True)
    last_claim_date = models.DateTimeField(null=True, blank=True)
    claim_count = models.PositiveIntegerField(default=0)
    overclaim_flagged = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["investor", "project"], name="unique_interest_per_investor_project"),
        ]

    def __str__(self):
        return f"{self.investor.username} interest on {self.project.name}: {self.pending_amount} pending"


class Transaction(models.Model):
    """Append-only audit row, one per on-chain transaction hash."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="chain_transactions")
    project = models.ForeignKey(Project, on_delete=models.SET_NULL, null=True, blank=True, related_name="transactions")
    type = models.CharField(max_length=30, choices=TransactionType.choices, db_index=True)
    tx_hash = models.CharField(max_length=66, unique=True, validators=[tx_hash_validator])
    from_address = models.CharField(max_length=42, validators=[address_validator])
    to_address = models.CharField(max_length=42, validators=[address_validator])
    amount = models.DecimalField(max_digits=30, decimal_places=8)
    token_amount = models.DecimalField(max_digits=30, decimal_places=8, null=True, blank=True)
    block_number = models.BigIntegerField(null=True, blank=True)
    gas_used = models.CharField(max_length=40, blank=True, default="")
    status = models.CharField(max_length=10, choices=ChainStatus.choices, default=ChainStatus.PENDING, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    def __str__(self):
        return f"{self.type} {self.tx_hash} ({self.status})"


class Notification(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    type = models.CharField(max_length=30, choices=NotificationType.choices, db_index=True)
    title = models.CharField(max_length=200)
    message = models.TextField()
    link = models.CharField(max_length=500, blank=True, default="")
    is_read = models.BooleanField(default=False, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.user.username}: {self.title}"
