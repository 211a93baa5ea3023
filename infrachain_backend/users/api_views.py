# users/api_views.py
import logging
import secrets
from datetime import timedelta

from django.contrib.auth.models import User
from django.core.cache import cache
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.shortcuts import get_object_or_404
from django.utils import timezone
from eth_account import Account
from eth_account.messages import encode_defunct
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from blockchain.adapter import validate_address
from infrachain_backend.exceptions import ValidationError
from infrachain_backend.pagination import paginate
from projects.models import TOKEN_UNITS, ChainStatus, Investment, NotificationType
from projects.notifications import notify
from projects.serializers import amount_str

from .models import KycStatus, Profile, Role
from .permissions import IsAdmin, IsAdminOrAuditor
from .serializers import (
    KycDecisionSerializer,
    KycSubmissionSerializer,
    ProfileUpdateSerializer,
    RoleUpdateSerializer,
    UserSerializer,
    WalletLoginSerializer,
)

logger = logging.getLogger(__name__)

NONCE_TTL = 300


def login_message(wallet, nonce):
    return f"Sign in to INFRACHAIN\nWallet: {wallet}\nNonce: {nonce}"


def _nonce_key(wallet):
    return f"login-nonce:{wallet}"


# ---------------------------------------------------------------- auth

@api_view(["GET"])
def get_nonce(request):
    wallet = validate_address(request.query_params.get("walletAddress")).lower()
    nonce = secrets.token_hex(16)
    cache.set(_nonce_key(wallet), nonce, NONCE_TTL)
    return Response({"nonce": nonce, "message": login_message(wallet, nonce)})


@api_view(["POST"])
def login_with_wallet(request):
    serializer = WalletLoginSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    wallet = serializer.validated_data["walletAddress"].lower()
    message = serializer.validated_data["message"]

    nonce = cache.get(_nonce_key(wallet))
    if not nonce or message != login_message(wallet, nonce):
        return Response({"error": "Login message expired or invalid"}, status=status.HTTP_401_UNAUTHORIZED)

    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=serializer.validated_data["signature"])
    except Exception as e:
        logger.info("Signature recovery failed for %s: %s", wallet, e)
        return Response({"error": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)
    if recovered.lower() != wallet:
        return Response({"error": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)
    cache.delete(_nonce_key(wallet))

    with transaction.atomic():
        profile = Profile.objects.select_related("user").filter(wallet_address=wallet).first()
        if profile is None:
            user = User.objects.create_user(username=wallet)
            profile = Profile.for_user(user)
            profile.wallet_address = wallet
            logger.info("Registered investor %s", wallet)
        if not profile.user.is_active:
            return Response({"error": "User not found or inactive"}, status=status.HTTP_401_UNAUTHORIZED)
        profile.last_login_at = timezone.now()
        profile.save()
        token, _ = Token.objects.get_or_create(user=profile.user)

    return Response({"success": True, "token": token.key, "user": UserSerializer(profile).data})


@api_view(["GET", "PUT"])
@permission_classes([IsAuthenticated])
def profile(request):
    prof = Profile.for_user(request.user)
    if request.method == "GET":
        return Response({"user": UserSerializer(prof).data})

    serializer = ProfileUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    with transaction.atomic():
        if "email" in data:
            if User.objects.filter(email__iexact=data["email"]).exclude(pk=request.user.pk).exists():
                raise ValidationError("Email already in use")
            request.user.email = data["email"]
            request.user.save(update_fields=["email"])
        if "name" in data:
            prof.name = data["name"]
        if "profileImage" in data:
            prof.profile_image = data["profileImage"]
        prof.save()
    return Response({"success": True, "user": UserSerializer(prof).data})


# ---------------------------------------------------------------- kyc

@api_view(["POST"])
@permission_classes([IsAuthenticated])
def submit_kyc(request):
    serializer = KycSubmissionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    prof = Profile.for_user(request.user)

    documents = {key: str(value) for key, value in serializer.validated_data.items()}
    documents["submittedAt"] = timezone.now().isoformat()
    documents["status"] = KycStatus.PENDING
    prof.kyc_documents = documents
    prof.kyc_status = KycStatus.PENDING
    prof.save(update_fields=["kyc_documents", "kyc_status", "updated_at"])

    return Response({
        "success": True,
        "message": "KYC documents submitted successfully",
        "data": {"kycStatus": prof.kyc_status, "submittedAt": documents["submittedAt"]},
    })


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def kyc_status(request):
    prof = Profile.for_user(request.user)
    return Response({
        "kycStatus": prof.kyc_status,
        "submittedAt": prof.kyc_documents.get("submittedAt"),
        "verifiedAt": prof.kyc_documents.get("verifiedAt"),
        "rejectionReason": prof.kyc_documents.get("rejectionReason"),
    })


@api_view(["POST"])
@permission_classes([IsAdmin])
def verify_kyc(request, user_id):
    serializer = KycDecisionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    decision = serializer.validated_data["status"]

    prof = get_object_or_404(Profile, user_id=user_id)
    if not prof.kyc_documents:
        raise ValidationError("No KYC documents found for this user")

    with transaction.atomic():
        verified_at = timezone.now().isoformat()
        prof.kyc_status = decision
        prof.kyc_documents = {
            **prof.kyc_documents,
            "verificationStatus": decision,
            "verifiedBy": request.user.pk,
            "verifiedAt": verified_at,
            "rejectionReason": serializer.validated_data["rejectionReason"] if decision == KycStatus.REJECTED else None,
        }
        prof.save(update_fields=["kyc_status", "kyc_documents", "updated_at"])
        if decision == KycStatus.VERIFIED:
            notify(prof.user, NotificationType.KYC_APPROVED, "KYC approved", "Your identity has been verified.")
        else:
            notify(prof.user, NotificationType.KYC_REJECTED, "KYC rejected",
                   serializer.validated_data["rejectionReason"] or "Your KYC submission was rejected.")

    logger.info("KYC for user %s set to %s by %s", user_id, decision, request.user.pk)
    return Response({
        "success": True,
        "message": f"KYC {'approved' if decision == KycStatus.VERIFIED else 'rejected'} successfully",
        "data": {"userId": prof.user_id, "kycStatus": prof.kyc_status, "verifiedAt": verified_at},
    })


@api_view(["GET"])
@permission_classes([IsAdmin])
def pending_kyc(request):
    queryset = (
        Profile.objects.select_related("user")
        .filter(kyc_status=KycStatus.PENDING)
        .exclude(kyc_documents={})
        .order_by("-updated_at")
    )
    profiles, pagination = paginate(request, queryset)
    data = []
    for prof in profiles:
        row = UserSerializer(prof).data
        row["kycDocuments"] = prof.kyc_documents
        data.append(row)
    return Response({"users": data, "pagination": pagination})


# ---------------------------------------------------------------- admin

@api_view(["GET"])
@permission_classes([IsAdmin])
def list_users(request):
    queryset = Profile.objects.select_related("user").order_by("-created_at")
    role = request.query_params.get("role")
    kyc = request.query_params.get("kycStatus")
    search = request.query_params.get("search")
    if role:
        queryset = queryset.filter(role=role)
    if kyc:
        queryset = queryset.filter(kyc_status=kyc)
    if search:
        queryset = queryset.filter(
            Q(name__icontains=search) | Q(user__email__icontains=search) | Q(wallet_address__icontains=search)
        )
    profiles, pagination = paginate(request, queryset)
    return Response({"users": UserSerializer(profiles, many=True).data, "pagination": pagination})


@api_view(["GET", "DELETE"])
@permission_classes([IsAdmin])
def user_detail(request, user_id):
    prof = get_object_or_404(Profile.objects.select_related("user"), user_id=user_id)
    if request.method == "GET":
        investments = prof.user.investments.values("status").annotate(count=Count("id"), total=Sum("amount"))
        data = UserSerializer(prof).data
        data["kycDocuments"] = prof.kyc_documents
        data["investments"] = {
            row["status"]: {"count": row["count"], "total": amount_str(row["total"])} for row in investments
        }
        return Response({"user": data})

    if prof.user_id == request.user.pk:
        return Response({"error": "You cannot deactivate your own account"}, status=status.HTTP_403_FORBIDDEN)
    prof.user.is_active = False
    prof.user.save(update_fields=["is_active"])
    Token.objects.filter(user=prof.user).delete()
    logger.info("User %s deactivated by %s", user_id, request.user.pk)
    return Response({"success": True, "message": "User deactivated"})


@api_view(["PUT"])
@permission_classes([IsAdmin])
def update_user_role(request, user_id):
    serializer = RoleUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    prof = get_object_or_404(Profile, user_id=user_id)
    if prof.user_id == request.user.pk:
        return Response({"error": "You cannot change your own role"}, status=status.HTTP_403_FORBIDDEN)
    prof.role = serializer.validated_data["role"]
    prof.save(update_fields=["role", "updated_at"])
    logger.info("User %s role set to %s by %s", user_id, prof.role, request.user.pk)
    return Response({"success": True, "data": {"userId": prof.user_id, "newRole": prof.role}})


@api_view(["GET"])
@permission_classes([IsAdminOrAuditor])
def platform_stats(request):
    now = timezone.now()
    profiles = Profile.objects.all()
    totals = profiles.aggregate(invested=Sum("total_invested"), tokens=Sum("total_tokens"))
    by_role = {role: 0 for role in Role.values}
    by_role.update({row["role"]: row["count"] for row in profiles.values("role").annotate(count=Count("id"))})
    by_kyc = {kyc: 0 for kyc in KycStatus.values}
    by_kyc.update({row["kyc_status"]: row["count"] for row in profiles.values("kyc_status").annotate(count=Count("id"))})
    investments = {state: 0 for state in ChainStatus.values}
    investments.update({
        row["status"]: row["count"] for row in Investment.objects.values("status").annotate(count=Count("id"))
    })

    return Response({
        "success": True,
        "data": {
            "users": {
                "total": User.objects.count(),
                "byRole": by_role,
                "byKycStatus": by_kyc,
                "activeUsers": profiles.filter(last_login_at__gte=now - timedelta(days=30)).count(),
                "recentRegistrations": User.objects.filter(date_joined__gte=now - timedelta(days=7)).count(),
            },
            "investments": {
                "totalInvested": amount_str(totals["invested"]),
                "totalTokensIssued": amount_str(totals["tokens"], TOKEN_UNITS),
                "byStatus": investments,
            },
        },
    })
