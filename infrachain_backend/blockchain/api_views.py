# blockchain/api_views.py
from django.db import connection
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .adapter import as_json, get_chain_adapter


@api_view(["GET"])
def chain_project(request, project_id):
    data = get_chain_adapter().get_project(project_id)
    return Response({"projectId": project_id, "data": as_json(data)})


@api_view(["GET"])
def project_investor_count(request, project_id):
    count = get_chain_adapter().get_project_investor_count(project_id)
    return Response({"projectId": project_id, "investorCount": count})


@api_view(["GET"])
def token_balance(request, address):
    balance = get_chain_adapter().get_token_balance(address)
    return Response({"address": address.lower(), "balance": str(balance)})


@api_view(["GET"])
def user_investment(request, address, project_id):
    amount = get_chain_adapter().get_user_investment(address, project_id)
    return Response({"address": address.lower(), "projectId": project_id, "investment": str(amount)})


@api_view(["GET"])
def accrued_interest(request, address, project_id):
    amount = get_chain_adapter().get_accrued_interest(address, project_id)
    return Response({"address": address.lower(), "projectId": project_id, "accruedInterest": str(amount)})


@api_view(["GET"])
def transaction_status(request, tx_hash):
    return Response({"transactionHash": tx_hash.lower(), **get_chain_adapter().verify_transaction(tx_hash)})


@api_view(["GET"])
def current_block(request):
    return Response({"blockNumber": get_chain_adapter().get_current_block()})


@api_view(["GET"])
def health(request):
    adapter = get_chain_adapter()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
    return Response({
        "status": "ok",
        "database": "ok",
        "blockchain": {"configured": adapter.available, "connected": adapter.is_connected()},
    })
