from __future__ import annotations

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .engine import get_engine
from .exceptions import (
    InsufficientStock,
    InvalidInput,
    OutOfStock,
    StockkeeperError,
    StorageError,
)


def _error(exc: StockkeeperError, status: int) -> JsonResponse:
    """
    Small helper to keep error bodies consistent across endpoints.
    """
    return JsonResponse(exc.to_dict(), status=status)


def _param(request: HttpRequest, name: str) -> str | None:
    if request.method == "POST" and name in request.POST:
        return request.POST.get(name)
    return request.GET.get(name)


def _bucket(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    raw = raw.strip()
    if not raw.isdecimal():
        raise InvalidInput("Inventory must be an integer id")
    return int(raw)


@csrf_exempt
@require_http_methods(["GET", "POST"])
def allocate(request: HttpRequest) -> HttpResponse:
    """
    Sell ``quantity`` products to ``order_id``.

    Returns ``[{"product": content}, ...]`` in allocation order.
    """
    try:
        bucket = _bucket(_param(request, "bucket"))
        contents = get_engine().allocate(
            _param(request, "quantity"), _param(request, "order_id"), bucket
        )
    except InvalidInput as exc:
        return _error(exc, 400)
    except OutOfStock as exc:
        return _error(exc, 404)
    except InsufficientStock as exc:
        return _error(exc, 400)
    except StorageError as exc:
        return _error(exc, 503)

    return JsonResponse([{"product": c} for c in contents], safe=False)


@require_GET
def count(request: HttpRequest) -> HttpResponse:
    try:
        n = get_engine().available_count(_bucket(request.GET.get("bucket")))
    except InvalidInput as exc:
        return _error(exc, 400)
    except StorageError as exc:
        return _error(exc, 503)
    return JsonResponse({"sum": n})


@csrf_exempt
@require_POST
def stock_check(request: HttpRequest) -> HttpResponse:
    """Run an alert evaluation now, outside the schedule."""
    try:
        result = get_engine().check_stock()
    except StorageError as exc:
        return _error(exc, 503)
    return JsonResponse(result)
