# users/serializers.py
from rest_framework import serializers

from .models import KycStatus, Profile, Role


class UserSerializer(serializers.ModelSerializer):
    id = serializers.IntegerField(source="user.id", read_only=True)
    walletAddress = serializers.CharField(source="wallet_address", read_only=True)
    email = serializers.EmailField(source="user.email", read_only=True)
    kycStatus = serializers.CharField(source="kyc_status", read_only=True)
    totalInvested = serializers.DecimalField(source="total_invested", max_digits=20, decimal_places=2, read_only=True)
    totalTokens = serializers.DecimalField(source="total_tokens", max_digits=30, decimal_places=8, read_only=True)
    profileImage = serializers.CharField(source="profile_image", read_only=True)
    isActive = serializers.BooleanField(source="user.is_active", read_only=True)
    lastLogin = serializers.DateTimeField(source="last_login_at", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Profile
        fields = [
            "id", "walletAddress", "email", "name", "role", "kycStatus", "totalInvested",
            "totalTokens", "profileImage", "isActive", "lastLogin", "createdAt",
        ]


class ProfileUpdateSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False)
    name = serializers.CharField(max_length=200, required=False)
    profileImage = serializers.CharField(max_length=500, required=False)


class WalletLoginSerializer(serializers.Serializer):
    walletAddress = serializers.RegexField(r"^0x[a-fA-F0-9]{40}$")
    signature = serializers.RegexField(r"^0x[a-fA-F0-9]{130}$")
    message = serializers.CharField()


class KycSubmissionSerializer(serializers.Serializer):
    documentType = serializers.CharField(max_length=50)
    documentNumber = serializers.CharField(max_length=100)
    fullName = serializers.CharField(max_length=200)
    dateOfBirth = serializers.DateField()
    address = serializers.CharField(required=False, allow_blank=True, default="")
    country = serializers.CharField(required=False, allow_blank=True, default="")


class KycDecisionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[KycStatus.VERIFIED, KycStatus.REJECTED])
    rejectionReason = serializers.CharField(required=False, allow_blank=True, default="")


class RoleUpdateSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Role.choices)
