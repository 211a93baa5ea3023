# blockchain/api_urls.py
from django.urls import path

from . import api_views

urlpatterns = [
    path('project/<int:project_id>/', api_views.chain_project, name='api-chain-project'),
    path('project/<int:project_id>/investors/', api_views.project_investor_count, name='api-chain-investor-count'),
    path('balance/<str:address>/', api_views.token_balance, name='api-chain-balance'),
    path('investment/<str:address>/<int:project_id>/', api_views.user_investment, name='api-chain-investment'),
    path('interest/<str:address>/<int:project_id>/', api_views.accrued_interest, name='api-chain-interest'),
    path('transaction/<str:tx_hash>/', api_views.transaction_status, name='api-chain-transaction'),
    path('block/', api_views.current_block, name='api-chain-block'),
]
