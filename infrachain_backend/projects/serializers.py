# projects/serializers.py
from decimal import Decimal

from rest_framework import serializers

from .models import (
    ADDRESS_RE,
    CENTS,
    TX_HASH_RE,
    Interest,
    Investment,
    Milestone,
    MilestoneStatus,
    Notification,
    Project,
)


def amount_str(value, unit=CENTS):
    """Aggregates come back unquantized on some backends; render them at a fixed scale."""
    return str(Decimal(value or 0).quantize(unit))


class ManagerField(serializers.Field):
    def to_representation(self, user):
        profile = getattr(user, "profile", None)
        return {
            "id": user.pk,
            "name": profile.name if profile else "",
            "walletAddress": profile.wallet_address if profile else None,
        }


class ProjectSerializer(serializers.ModelSerializer):
    projectId = serializers.IntegerField(source="chain_project_id", required=False, min_value=1)
    fundingGoal = serializers.DecimalField(source="funding_goal", max_digits=20, decimal_places=2, min_value=Decimal("0.01"))
    fundsRaised = serializers.DecimalField(source="funds_raised", max_digits=20, decimal_places=2, read_only=True)
    fundsReleased = serializers.DecimalField(source="funds_released", max_digits=20, decimal_places=2, read_only=True)
    interestRateAnnual = serializers.DecimalField(
        source="interest_rate_annual", max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("20")
    )
    durationMonths = serializers.IntegerField(source="duration_months", min_value=1)
    projectWallet = serializers.RegexField(ADDRESS_RE, source="project_wallet")
    investorCount = serializers.IntegerField(source="investor_count", read_only=True)
    sdgGoals = serializers.ListField(child=serializers.IntegerField(min_value=1, max_value=17), source="sdg_goals", required=False)
    startDate = serializers.DateTimeField(source="start_date", required=False, allow_null=True)
    expectedEndDate = serializers.DateTimeField(source="expected_end_date", required=False, allow_null=True)
    actualEndDate = serializers.DateTimeField(source="actual_end_date", required=False, allow_null=True)
    contractAddress = serializers.CharField(source="contract_address", required=False, allow_blank=True)
    transactionHash = serializers.CharField(source="tx_hash", required=False, allow_blank=True)
    manager = ManagerField(read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Project
        fields = [
            "id", "projectId", "name", "description", "category", "location", "fundingGoal", "fundsRaised",
            "fundsReleased", "interestRateAnnual", "durationMonths", "projectWallet", "status", "investorCount",
            "images", "documents", "sdgGoals", "startDate", "expectedEndDate", "actualEndDate",
            "contractAddress", "transactionHash", "manager", "createdAt",
        ]

    def validate_projectWallet(self, value):
        return value.lower()


class InvestmentSerializer(serializers.ModelSerializer):
    investorId = serializers.IntegerField(source="investor_id", read_only=True)
    projectId = serializers.UUIDField(source="project_id", read_only=True)
    tokensMinted = serializers.DecimalField(source="tokens_minted", max_digits=30, decimal_places=8, read_only=True)
    transactionHash = serializers.CharField(source="tx_hash", read_only=True)
    blockNumber = serializers.IntegerField(source="block_number", read_only=True)
    gasUsed = serializers.CharField(source="gas_used", read_only=True)
    confirmedAt = serializers.DateTimeField(source="confirmed_at", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    project = serializers.SerializerMethodField()

    class Meta:
        model = Investment
        fields = [
            "id", "investorId", "projectId", "amount", "tokensMinted", "transactionHash", "blockNumber",
            "status", "gasUsed", "confirmedAt", "createdAt", "project",
        ]

    def get_project(self, obj):
        project = obj.project
        return {
            "id": str(project.pk),
            "name": project.name,
            "category": project.category,
            "status": project.status,
            "interestRateAnnual": str(project.interest_rate_annual),
        }


class InvestmentCreateSerializer(serializers.Serializer):
    projectId = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=20, decimal_places=2, min_value=Decimal("0.01"))
    tokensMinted = serializers.DecimalField(max_digits=30, decimal_places=8, min_value=Decimal("0.00000001"))
    transactionHash = serializers.RegexField(TX_HASH_RE)


class MilestoneSerializer(serializers.ModelSerializer):
    projectId = serializers.UUIDField(source="project_id", read_only=True)
    milestoneIndex = serializers.IntegerField(source="milestone_index", read_only=True)
    targetDate = serializers.DateTimeField(source="target_date")
    fundsToRelease = serializers.DecimalField(source="funds_to_release", max_digits=20, decimal_places=2, min_value=Decimal("0"))
    completedDate = serializers.DateTimeField(source="completed_date", read_only=True)
    evidenceHash = serializers.CharField(source="evidence_hash", read_only=True)
    evidenceUrl = serializers.CharField(source="evidence_url", read_only=True)
    verifiedBy = serializers.CharField(source="verified_by", read_only=True)
    transactionHash = serializers.CharField(source="tx_hash", read_only=True)
    notes = serializers.CharField(read_only=True)

    class Meta:
        model = Milestone
        fields = [
            "id", "projectId", "milestoneIndex", "name", "description", "targetDate", "fundsToRelease",
            "status", "completedDate", "evidenceHash", "evidenceUrl", "verifiedBy", "transactionHash", "notes",
        ]
        read_only_fields = ["status"]


class MilestoneUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=MilestoneStatus.choices, required=False)
    evidenceHash = serializers.CharField(max_length=200, required=False, allow_blank=True)
    evidenceUrl = serializers.CharField(max_length=500, required=False, allow_blank=True)
    verifiedBy = serializers.RegexField(ADDRESS_RE, required=False, allow_blank=True)
    transactionHash = serializers.RegexField(TX_HASH_RE, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class InterestSerializer(serializers.ModelSerializer):
    investorId = serializers.IntegerField(source="investor_id", read_only=True)
    projectId = serializers.UUIDField(source="project_id", read_only=True)
    accruedAmount = serializers.DecimalField(source="accrued_amount", max_digits=30, decimal_places=8, read_only=True)
    claimedAmount = serializers.DecimalField(source="claimed_amount", max_digits=30, decimal_places=8, read_only=True)
    pendingAmount = serializers.DecimalField(source="pending_amount", max_digits=30, decimal_places=8, read_only=True)
    lastAccrualDate = serializers.DateTimeField(source="last_accrual_date", read_only=True)
    lastClaimDate = serializers.DateTimeField(source="last_claim_date", read_only=True)
    claimCount = serializers.IntegerField(source="claim_count", read_only=True)
    overclaimFlagged = serializers.BooleanField(source="overclaim_flagged", read_only=True)

    class Meta:
        model = Interest
        fields = [
            "id", "investorId", "projectId", "accruedAmount", "claimedAmount", "pendingAmount",
            "lastAccrualDate", "lastClaimDate", "claimCount", "overclaimFlagged",
        ]


class NotificationSerializer(serializers.ModelSerializer):
    isRead = serializers.BooleanField(source="is_read", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Notification
        fields = ["id", "type", "title", "message", "link", "isRead", "metadata", "createdAt"]
