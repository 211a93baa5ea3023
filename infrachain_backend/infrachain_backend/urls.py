# infrachain_backend/urls.py
from django.contrib import admin
from django.urls import include, path

from blockchain.api_views import health
from projects import api_urls as project_urls
from users import api_urls as user_urls

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/auth/', include(user_urls.auth_urlpatterns)),
    path('api/kyc/', include(user_urls.kyc_urlpatterns)),
    path('api/admin/', include(user_urls.admin_urlpatterns)),
    path('api/projects/', include(project_urls.project_urlpatterns)),
    path('api/investments/', include(project_urls.investment_urlpatterns)),
    path('api/milestones/', include(project_urls.milestone_urlpatterns)),
    path('api/interest/', include(project_urls.interest_urlpatterns)),
    path('api/notifications/', include(project_urls.notification_urlpatterns)),
    path('api/blockchain/', include('blockchain.api_urls')),
    path('api/health/', health, name='api-health'),
]
