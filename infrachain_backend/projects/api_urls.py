# projects/api_urls.py
from django.urls import path

from . import api_views

project_urlpatterns = [
    path('', api_views.projects, name='api-projects'),
    path('<uuid:project_id>/', api_views.project_detail, name='api-project-detail'),
    path('<uuid:project_id>/stats/', api_views.project_stats, name='api-project-stats'),
]

investment_urlpatterns = [
    path('', api_views.record_investment, name='api-investments'),
    path('my/', api_views.my_investments, name='api-investments-my'),
    path('stats/', api_views.investment_stats, name='api-investments-stats'),
    path('project/<uuid:project_id>/', api_views.project_investments, name='api-investments-project'),
    path('<uuid:investment_id>/verify/', api_views.verify_investment, name='api-investment-verify'),
]

milestone_urlpatterns = [
    path('project/<uuid:project_id>/', api_views.project_milestones, name='api-milestones-project'),
    path('<uuid:milestone_id>/', api_views.milestone_detail, name='api-milestone-detail'),
]

interest_urlpatterns = [
    path('project/<uuid:project_id>/', api_views.project_interest, name='api-interest-project'),
]

notification_urlpatterns = [
    path('', api_views.notifications, name='api-notifications'),
    path('<uuid:notification_id>/read/', api_views.mark_notification_read, name='api-notification-read'),
]
