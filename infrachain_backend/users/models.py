from decimal import Decimal

from django.contrib.auth.models import User
from django.db import models


class Role(models.TextChoices):
    INVESTOR = "investor", "Investor"
    PROJECT_MANAGER = "project_manager", "Project manager"
    ADMIN = "admin", "Admin"
    AUDITOR = "auditor", "Auditor"


class KycStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"


class Profile(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE)
    # stored lowercase; null for email-only accounts
    wallet_address = models.CharField(max_length=42, unique=True, null=True, blank=True)
    name = models.CharField(max_length=200, blank=True, default="")
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.INVESTOR, db_index=True)
    kyc_status = models.CharField(max_length=10, choices=KycStatus.choices, default=KycStatus.PENDING, db_index=True)
    kyc_documents = models.JSONField(default=dict, blank=True)
    # only moved by confirmed investments
    total_invested = models.DecimalField(max_digits=20, decimal_places=2, default=Decimal("0"))
    total_tokens = models.DecimalField(max_digits=30, decimal_places=8, default=Decimal("0"))
    profile_image = models.CharField(max_length=500, blank=True, default="")
    last_login_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["created_at"])]

    def __str__(self):
        return f"{self.user.username} – {self.wallet_address or self.user.email}"

    @classmethod
    def for_user(cls, user):
        profile, _ = cls.objects.get_or_create(user=user)
        return profile
