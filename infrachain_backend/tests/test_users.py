import pytest
from django.contrib.auth.models import User
from eth_account import Account
from eth_account.messages import encode_defunct
from rest_framework.authtoken.models import Token

from projects.models import Notification, NotificationType
from users.models import KycStatus, Profile, Role

from .conftest import make_user

pytestmark = pytest.mark.django_db

KYC_DOCUMENTS = {
    "documentType": "passport",
    "documentNumber": "A1234567",
    "fullName": "Ada Obi",
    "dateOfBirth": "1990-04-01",
    "country": "NG",
}


def sign_in(api, account, tamper=None):
    message = api.get("/api/auth/nonce/", {"walletAddress": account.address}).data["message"]
    signer = tamper or account
    signed = Account.sign_message(encode_defunct(text=message), private_key=signer.key)
    return api.post(
        "/api/auth/login/",
        {"walletAddress": account.address, "signature": "0x" + bytes(signed.signature).hex(), "message": message},
        format="json",
    )


class TestWalletLogin:
    def test_first_login_registers_investor(self, api):
        account = Account.create()

        response = sign_in(api, account)

        assert response.status_code == 200
        user = response.data["user"]
        assert user["walletAddress"] == account.address.lower()
        assert user["role"] == Role.INVESTOR
        assert user["kycStatus"] == KycStatus.PENDING
        assert Token.objects.get(key=response.data["token"]).user.profile.wallet_address == account.address.lower()

    def test_token_authenticates_profile_requests(self, api):
        account = Account.create()
        token = sign_in(api, account).data["token"]

        api.credentials(HTTP_AUTHORIZATION=f"Token {token}")
        response = api.get("/api/auth/profile/")

        assert response.status_code == 200
        assert response.data["user"]["walletAddress"] == account.address.lower()

    def test_second_login_reuses_account(self, api):
        account = Account.create()
        sign_in(api, account)
        sign_in(api, account)
        assert Profile.objects.filter(wallet_address=account.address.lower()).count() == 1

    def test_signature_from_other_wallet_is_rejected(self, api):
        response = sign_in(api, Account.create(), tamper=Account.create())
        assert response.status_code == 401
        assert response.data == {"error": "Invalid signature"}

    def test_nonce_cannot_be_replayed(self, api):
        account = Account.create()
        message = api.get("/api/auth/nonce/", {"walletAddress": account.address}).data["message"]
        signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
        payload = {
            "walletAddress": account.address,
            "signature": "0x" + bytes(signed.signature).hex(),
            "message": message,
        }

        assert api.post("/api/auth/login/", payload, format="json").status_code == 200
        assert api.post("/api/auth/login/", payload, format="json").status_code == 401

    def test_deactivated_user_cannot_log_in(self, api):
        account = Account.create()
        sign_in(api, account)
        User.objects.filter(username=account.address.lower()).update(is_active=False)

        assert sign_in(api, account).status_code == 401

    def test_nonce_requires_valid_address(self, api):
        response = api.get("/api/auth/nonce/", {"walletAddress": "0x123"})
        assert response.status_code == 400
        assert "Invalid wallet address" in response.data["error"]

    def test_profile_requires_authentication(self, api):
        assert api.get("/api/auth/profile/").status_code == 401


class TestProfile:
    def test_update_name_and_email(self, as_user, investor):
        response = as_user(investor).put("/api/auth/profile/", {"name": "Ada", "email": "ada@example.com"}, format="json")

        assert response.status_code == 200
        assert response.data["user"]["name"] == "Ada"
        assert response.data["user"]["email"] == "ada@example.com"

    def test_email_must_be_unique(self, as_user, investor, other_investor):
        other_investor.email = "taken@example.com"
        other_investor.save()

        response = as_user(investor).put("/api/auth/profile/", {"email": "TAKEN@example.com"}, format="json")

        assert response.status_code == 400
        assert response.data == {"error": "Email already in use"}


class TestKyc:
    def test_submit_and_read_status(self, as_user, investor):
        client = as_user(investor)

        submitted = client.post("/api/kyc/submit/", KYC_DOCUMENTS, format="json")
        status = client.get("/api/kyc/status/").data

        assert submitted.status_code == 200
        assert status["kycStatus"] == KycStatus.PENDING
        assert status["submittedAt"] is not None

    def test_admin_approves_and_investor_is_notified(self, as_user, investor, admin_user):
        as_user(investor).post("/api/kyc/submit/", KYC_DOCUMENTS, format="json")

        response = as_user(admin_user).post(f"/api/kyc/verify/{investor.pk}/", {"status": "verified"}, format="json")

        assert response.status_code == 200
        assert Profile.objects.get(user=investor).kyc_status == KycStatus.VERIFIED
        assert Notification.objects.filter(user=investor, type=NotificationType.KYC_APPROVED).exists()

    def test_rejection_keeps_reason(self, as_user, investor, admin_user):
        as_user(investor).post("/api/kyc/submit/", KYC_DOCUMENTS, format="json")
        as_user(admin_user).post(
            f"/api/kyc/verify/{investor.pk}/", {"status": "rejected", "rejectionReason": "Blurry scan"}, format="json"
        )

        status = as_user(investor).get("/api/kyc/status/").data

        assert status["kycStatus"] == KycStatus.REJECTED
        assert status["rejectionReason"] == "Blurry scan"

    def test_verify_without_documents_is_400(self, as_user, investor, admin_user):
        response = as_user(admin_user).post(f"/api/kyc/verify/{investor.pk}/", {"status": "verified"}, format="json")
        assert response.status_code == 400

    def test_investor_cannot_verify(self, as_user, investor, other_investor):
        response = as_user(other_investor).post(f"/api/kyc/verify/{investor.pk}/", {"status": "verified"}, format="json")
        assert response.status_code == 403

    def test_pending_queue_lists_submissions_only(self, as_user, investor, other_investor, admin_user):
        as_user(investor).post("/api/kyc/submit/", KYC_DOCUMENTS, format="json")

        response = as_user(admin_user).get("/api/kyc/pending/")

        assert [u["id"] for u in response.data["users"]] == [investor.pk]
        assert response.data["users"][0]["kycDocuments"]["documentNumber"] == "A1234567"


class TestAdmin:
    def test_list_users_filters_by_role(self, as_user, investor, manager, admin_user):
        response = as_user(admin_user).get("/api/admin/users/", {"role": "project_manager"})
        assert [u["id"] for u in response.data["users"]] == [manager.pk]

    def test_change_role(self, as_user, investor, admin_user):
        response = as_user(admin_user).put(f"/api/admin/users/{investor.pk}/role/", {"role": "auditor"}, format="json")

        assert response.status_code == 200
        assert Profile.objects.get(user=investor).role == Role.AUDITOR

    def test_cannot_change_own_role(self, as_user, admin_user):
        response = as_user(admin_user).put(f"/api/admin/users/{admin_user.pk}/role/", {"role": "investor"}, format="json")
        assert response.status_code == 403

    def test_deactivate_revokes_tokens(self, as_user, investor, admin_user):
        Token.objects.create(user=investor)

        response = as_user(admin_user).delete(f"/api/admin/users/{investor.pk}/")

        investor.refresh_from_db()
        assert response.status_code == 200
        assert not investor.is_active
        assert not Token.objects.filter(user=investor).exists()

    def test_cannot_deactivate_self(self, as_user, admin_user):
        assert as_user(admin_user).delete(f"/api/admin/users/{admin_user.pk}/").status_code == 403

    def test_stats_open_to_auditors(self, as_user, investor, manager):
        auditor = make_user("auditor", role=Role.AUDITOR)

        data = as_user(auditor).get("/api/admin/stats/").data["data"]

        assert data["users"]["total"] == 3
        assert data["users"]["byRole"] == {"investor": 1, "project_manager": 1, "admin": 0, "auditor": 1}

    def test_stats_closed_to_investors(self, as_user, investor):
        assert as_user(investor).get("/api/admin/stats/").status_code == 403
