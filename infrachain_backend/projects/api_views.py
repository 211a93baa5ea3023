# projects/api_views.py
import logging

from django.db import transaction
from django.db.models import Count, Max, Q, Sum
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from blockchain.adapter import as_json, get_chain_adapter
from blockchain.exceptions import ChainReadError, ContractUnavailable
from infrachain_backend.pagination import paginate
from users.models import Role
from users.permissions import can_manage, check_role, role_of

from .exceptions import ValidationError
from .models import (
    TOKEN_UNITS,
    ChainStatus,
    Investment,
    Milestone,
    MilestoneStatus,
    Notification,
    Project,
    ProjectStatus,
)
from .reconciliation import Reconciler
from .serializers import (
    InterestSerializer,
    InvestmentCreateSerializer,
    InvestmentSerializer,
    MilestoneSerializer,
    MilestoneUpdateSerializer,
    NotificationSerializer,
    ProjectSerializer,
    amount_str,
)

logger = logging.getLogger(__name__)

PROJECT_SORT_FIELDS = {
    "createdAt": "created_at",
    "fundingGoal": "funding_goal",
    "fundsRaised": "funds_raised",
    "interestRateAnnual": "interest_rate_annual",
    "name": "name",
}


def _reconciler():
    return Reconciler(get_chain_adapter())


def _chain_read(read, *args):
    """Adapter read for display purposes; ``None`` when the chain can't answer."""
    try:
        return read(*args)
    except (ContractUnavailable, ChainReadError) as e:
        logger.warning("Chain data unavailable: %s", e)
        return None


def _progress(part, whole):
    if not whole:
        return 0.0
    return round(float(part / whole * 100), 2)


# ---------------------------------------------------------------- projects

@api_view(["GET", "POST"])
def projects(request):
    if request.method == "POST":
        return _create_project(request)

    queryset = Project.objects.select_related("manager__profile")
    params = request.query_params
    if params.get("status"):
        queryset = queryset.filter(status=params["status"])
    if params.get("category"):
        queryset = queryset.filter(category=params["category"])
    if params.get("search"):
        term = params["search"]
        queryset = queryset.filter(
            Q(name__icontains=term) | Q(description__icontains=term) | Q(location__icontains=term)
        )

    sort_by = PROJECT_SORT_FIELDS.get(params.get("sortBy", "createdAt"))
    if sort_by is None:
        raise ValidationError(f"Cannot sort by {params.get('sortBy')}")
    if params.get("sortOrder", "desc").lower() != "asc":
        sort_by = "-" + sort_by
    queryset = queryset.order_by(sort_by, "-chain_project_id")

    items, pagination = paginate(request, queryset)
    return Response({"projects": ProjectSerializer(items, many=True).data, "pagination": pagination})


def _create_project(request):
    check_role(request, Role.PROJECT_MANAGER, Role.ADMIN)
    serializer = ProjectSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    with transaction.atomic():
        data = serializer.validated_data
        if "chain_project_id" not in data:
            data["chain_project_id"] = Project.objects.count() + 1
        if Project.objects.filter(chain_project_id=data["chain_project_id"]).exists():
            raise ValidationError(f"Project id {data['chain_project_id']} is already taken")
        project = serializer.save(manager=request.user, status=ProjectStatus.DRAFT)

    logger.info("Project %s (%s) created by %s", project.chain_project_id, project.name, request.user.pk)
    return Response(
        {"success": True, "project": ProjectSerializer(project).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET", "PUT"])
def project_detail(request, project_id):
    project = get_object_or_404(Project.objects.select_related("manager__profile"), pk=project_id)

    if request.method == "PUT":
        if not request.user.is_authenticated:
            check_role(request, Role.PROJECT_MANAGER, Role.ADMIN)
        if not can_manage(request.user, project):
            raise PermissionDenied("Only the project manager or an admin can update this project")
        serializer = ProjectSerializer(project, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        if "chain_project_id" in serializer.validated_data:
            raise ValidationError("projectId cannot be changed")
        project = serializer.save()
        logger.info("Project %s updated by %s", project.chain_project_id, request.user.pk)
        return Response({"success": True, "project": ProjectSerializer(project).data})

    adapter = get_chain_adapter()
    data = ProjectSerializer(project).data
    data["milestones"] = MilestoneSerializer(project.milestones.all(), many=True).data
    data["blockchainData"] = as_json(_chain_read(adapter.get_project, project.chain_project_id))
    return Response({"project": data})


@api_view(["GET"])
def project_stats(request, project_id):
    project = get_object_or_404(Project, pk=project_id)
    milestones = project.milestones.aggregate(
        total=Count("id"),
        completed=Count("id", filter=Q(status=MilestoneStatus.COMPLETED)),
    )
    confirmed = project.investments.filter(status=ChainStatus.CONFIRMED)
    return Response({
        "stats": {
            "fundingGoal": str(project.funding_goal),
            "fundsRaised": str(project.funds_raised),
            "fundsReleased": str(project.funds_released),
            "fundsInEscrow": str(project.funds_raised - project.funds_released),
            "fundingProgress": _progress(project.funds_raised, project.funding_goal),
            "releaseProgress": _progress(project.funds_released, project.funds_raised),
            "investorCount": project.investor_count,
            "confirmedInvestments": confirmed.count(),
            "totalMilestones": milestones["total"],
            "completedMilestones": milestones["completed"],
            "pendingMilestones": milestones["total"] - milestones["completed"],
        }
    })


# ---------------------------------------------------------------- investments

@api_view(["POST"])
@permission_classes([IsAuthenticated])
def record_investment(request):
    serializer = InvestmentCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    project = get_object_or_404(Project, pk=data["projectId"])
    if project.status not in (ProjectStatus.ACTIVE, ProjectStatus.FUNDED, ProjectStatus.IN_PROGRESS):
        raise ValidationError(f"Project is not accepting investments (status {project.status})")

    investment = _reconciler().record_investment(
        request.user, project, data["amount"], data["tokensMinted"], data["transactionHash"]
    )
    return Response(
        {"success": True, "investment": InvestmentSerializer(investment).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def verify_investment(request, investment_id):
    investment = get_object_or_404(Investment.objects.select_related("project"), pk=investment_id)
    if investment.investor_id != request.user.pk and role_of(request.user) != Role.ADMIN:
        raise PermissionDenied("You can only verify your own investments")

    investment = _reconciler().reconcile_investment(investment)
    return Response({"success": True, "investment": InvestmentSerializer(investment).data})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def my_investments(request):
    queryset = request.user.investments.select_related("project").order_by("-created_at")
    if request.query_params.get("status"):
        queryset = queryset.filter(status=request.query_params["status"])
    items, pagination = paginate(request, queryset)
    return Response({"investments": InvestmentSerializer(items, many=True).data, "pagination": pagination})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def investment_stats(request):
    mine = request.user.investments.all()
    confirmed = mine.filter(status=ChainStatus.CONFIRMED)
    totals = confirmed.aggregate(invested=Sum("amount"), tokens=Sum("tokens_minted"), projects=Count("project", distinct=True))

    by_category = {
        row["project__category"]: {"count": row["count"], "total": amount_str(row["total"])}
        for row in confirmed.values("project__category").annotate(count=Count("id"), total=Sum("amount"))
    }
    by_status = {state: 0 for state in ChainStatus.values}
    by_status.update({row["status"]: row["count"] for row in mine.values("status").annotate(count=Count("id"))})

    return Response({
        "stats": {
            "totalInvested": amount_str(totals["invested"]),
            "totalTokens": amount_str(totals["tokens"], TOKEN_UNITS),
            "projectsCount": totals["projects"],
            "byCategory": by_category,
            "byStatus": by_status,
        }
    })


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def project_investments(request, project_id):
    project = get_object_or_404(Project, pk=project_id)
    queryset = project.investments.select_related("project").order_by("-created_at")
    if not can_manage(request.user, project) and role_of(request.user) != Role.AUDITOR:
        queryset = queryset.filter(investor=request.user)
    items, pagination = paginate(request, queryset)
    return Response({"investments": InvestmentSerializer(items, many=True).data, "pagination": pagination})


# ---------------------------------------------------------------- milestones

@api_view(["GET", "POST"])
def project_milestones(request, project_id):
    project = get_object_or_404(Project, pk=project_id)

    if request.method == "POST":
        if not request.user.is_authenticated:
            check_role(request, Role.PROJECT_MANAGER, Role.ADMIN)
        if not can_manage(request.user, project):
            raise PermissionDenied("Only the project manager or an admin can add milestones")
        serializer = MilestoneSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            Project.objects.select_for_update().get(pk=project.pk)
            last = project.milestones.aggregate(last=Max("milestone_index"))["last"]
            milestone = serializer.save(project=project, milestone_index=0 if last is None else last + 1)
        logger.info("Milestone %s added to project %s", milestone.milestone_index, project.chain_project_id)
        return Response(
            {"success": True, "milestone": MilestoneSerializer(milestone).data},
            status=status.HTTP_201_CREATED,
        )

    on_chain = _chain_read(get_chain_adapter().get_project_milestones, project.chain_project_id) or []
    data = MilestoneSerializer(project.milestones.all(), many=True).data
    for row in data:
        index = row["milestoneIndex"]
        row["blockchainData"] = as_json(on_chain[index]) if index < len(on_chain) else None
    return Response({"milestones": data})


@api_view(["GET", "PUT"])
def milestone_detail(request, milestone_id):
    milestone = get_object_or_404(Milestone.objects.select_related("project"), pk=milestone_id)
    if request.method == "GET":
        return Response({"milestone": MilestoneSerializer(milestone).data})

    if not request.user.is_authenticated:
        check_role(request, Role.PROJECT_MANAGER, Role.ADMIN)
    if not can_manage(request.user, milestone.project):
        raise PermissionDenied("Only the project manager or an admin can update milestones")

    serializer = MilestoneUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    verified_by = data.get("verifiedBy") or None
    if data.get("evidenceHash") and not verified_by:
        profile = getattr(request.user, "profile", None)
        verified_by = profile.wallet_address if profile else None

    milestone = _reconciler().update_milestone(
        milestone,
        status=data.get("status"),
        evidence_hash=data.get("evidenceHash") or None,
        verified_by=verified_by,
        evidence_url=data.get("evidenceUrl"),
        tx_hash=data.get("transactionHash") or None,
        notes=data.get("notes"),
    )
    return Response({"success": True, "milestone": MilestoneSerializer(milestone).data})


# ---------------------------------------------------------------- interest

@api_view(["GET"])
@permission_classes([IsAuthenticated])
def project_interest(request, project_id):
    project = get_object_or_404(Project, pk=project_id)
    interest = _reconciler().accrue_interest(request.user, project)
    return Response({"interest": InterestSerializer(interest).data})


# ---------------------------------------------------------------- notifications

@api_view(["GET"])
@permission_classes([IsAuthenticated])
def notifications(request):
    queryset = Notification.objects.filter(user=request.user)
    if request.query_params.get("unread") in ("1", "true"):
        queryset = queryset.filter(is_read=False)
    items, pagination = paginate(request, queryset, default_limit=20)
    return Response({
        "notifications": NotificationSerializer(items, many=True).data,
        "unreadCount": Notification.objects.filter(user=request.user, is_read=False).count(),
        "pagination": pagination,
    })


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def mark_notification_read(request, notification_id):
    notification = get_object_or_404(Notification, pk=notification_id, user=request.user)
    if not notification.is_read:
        notification.is_read = True
        notification.save(update_fields=["is_read"])
    return Response({"success": True, "notification": NotificationSerializer(notification).data})
