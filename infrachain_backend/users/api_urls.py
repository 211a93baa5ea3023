# users/api_urls.py
from django.urls import path

from . import api_views

auth_urlpatterns = [
    path('nonce/', api_views.get_nonce, name='api-auth-nonce'),
    path('login/', api_views.login_with_wallet, name='api-auth-login'),
    path('profile/', api_views.profile, name='api-auth-profile'),
]

kyc_urlpatterns = [
    path('submit/', api_views.submit_kyc, name='api-kyc-submit'),
    path('status/', api_views.kyc_status, name='api-kyc-status'),
    path('verify/<int:user_id>/', api_views.verify_kyc, name='api-kyc-verify'),
    path('pending/', api_views.pending_kyc, name='api-kyc-pending'),
]

admin_urlpatterns = [
    path('users/', api_views.list_users, name='api-admin-users'),
    path('users/<int:user_id>/', api_views.user_detail, name='api-admin-user-detail'),
    path('users/<int:user_id>/role/', api_views.update_user_role, name='api-admin-user-role'),
    path('stats/', api_views.platform_stats, name='api-admin-stats'),
]
