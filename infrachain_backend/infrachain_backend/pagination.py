from django.core.paginator import Paginator

from .exceptions import ValidationError

MAX_PAGE_SIZE = 100


def paginate(request, queryset, default_limit=10):
    """Slice ``queryset`` by ``?page=&limit=`` and describe the page."""
    try:
        page = int(request.query_params.get("page", 1))
        limit = int(request.query_params.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    limit = min(limit, MAX_PAGE_SIZE)

    paginator = Paginator(queryset, limit)
    items = paginator.get_page(page).object_list if paginator.count else []
    return items, {
        "total": paginator.count,
        "page": page,
        "limit": limit,
        "totalPages": paginator.num_pages if paginator.count else 0,
    }
