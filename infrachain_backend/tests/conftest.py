from decimal import Decimal

import pytest
from django.contrib.auth.models import User
from rest_framework.test import APIClient

from projects.models import Project, ProjectStatus
from projects.reconciliation import Reconciler
from users.models import Role

from . import fakes

INVESTOR_WALLET = "0x" + "1" * 40
MANAGER_WALLET = "0x" + "2" * 40
OTHER_WALLET = "0x" + "3" * 40
PROJECT_WALLET = "0x" + "a" * 40


def tx(n):
    return "0x" + format(n, "064x")


def make_user(username, role=Role.INVESTOR, wallet=None):
    user = User.objects.create_user(username=username, password="secret")
    profile = user.profile
    profile.role = role
    profile.wallet_address = wallet
    profile.save()
    return user


@pytest.fixture
def chain(settings, monkeypatch):
    adapter = fakes.FakeChainAdapter()
    monkeypatch.setattr(fakes, "active_adapter", adapter)
    settings.CHAIN_ADAPTER_FACTORY = "tests.fakes.current_adapter"
    return adapter


@pytest.fixture
def reconciler(chain):
    return Reconciler(chain)


@pytest.fixture
def investor(db):
    return make_user("investor", wallet=INVESTOR_WALLET)


@pytest.fixture
def other_investor(db):
    return make_user("other", wallet=OTHER_WALLET)


@pytest.fixture
def manager(db):
    return make_user("manager", role=Role.PROJECT_MANAGER, wallet=MANAGER_WALLET)


@pytest.fixture
def admin_user(db):
    return make_user("admin", role=Role.ADMIN)


@pytest.fixture
def project(manager):
    return Project.objects.create(
        chain_project_id=1,
        name="Lagos Light Rail",
        description="Blue line extension",
        category="transport",
        location="Lagos",
        funding_goal=Decimal("1000"),
        interest_rate_annual=Decimal("10"),
        duration_months=24,
        project_wallet=PROJECT_WALLET,
        manager=manager,
        status=ProjectStatus.ACTIVE,
    )


@pytest.fixture
def api():
    return APIClient()


@pytest.fixture
def as_user(api):
    def login(user):
        api.force_authenticate(user=user)
        return api
    return login
