import logging

from asgiref.sync import async_to_sync
from django.apps import apps
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .exceptions import CountryCacheError
from .models import Country
from .normalizer import compute_estimate
from .serializers import CountrySerializer, flatten_errors
from .store import parse_sort


logger = logging.getLogger(__name__)

ALLOWED_FILTERS = {
    "region": "region",
    "currency": "currency_code",
    "currency_code": "currency_code",
}


def get_orchestrator():
    return apps.get_app_config("countries").orchestrator


def error_response(exc):
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.error, exc.details)
    return Response(exc.to_response(), status=exc.status_code)


@api_view(['POST'])
def refresh_countries(request):
    """
    POST /countries/refresh
    Fetch countries and exchange rates, upsert the cache and rebuild the
    summary image. 503 when a source is down, 409 when a refresh is running.
    """
    try:
        report = async_to_sync(get_orchestrator().run_cycle)()
    except CountryCacheError as exc:
        return error_response(exc)

    return Response(
        {
            "message": "Refresh successful",
            "total": report.total_fetched,
            "upserted": report.upserted,
            "skipped": report.skipped,
            "last_refreshed_at": report.generated_at.isoformat(),
            "errors": report.errors,
        },
        status=status.HTTP_200_OK,
    )


@api_view(['GET', 'POST'])
def countries(request):
    if request.method == 'POST':
        return create_country(request)
    return list_countries(request)


def list_countries(request):
    """
    GET /countries
    Filters:
      - region, currency (alias currency_code); case-insensitive
    Sorting:
      - ?sort=<field>_asc or <field>_desc, field in gdp, estimated_gdp, population
      - countries without an estimate always come last
    Default:
      - Ordered by id ascending.
    """
    filters = {}
    for key, value in request.query_params.items():
        if key == "sort":
            continue
        if key not in ALLOWED_FILTERS:
            return Response(
                {"error": "Validation failed", "details": {key: "is not a valid filter"}},
                status=status.HTTP_400_BAD_REQUEST
            )
        if not value:
            return Response(
                {"error": "Validation failed", "details": {key: "is required"}},
                status=status.HTTP_400_BAD_REQUEST
            )
        filters[ALLOWED_FILTERS[key]] = value

    try:
        sort_param = request.query_params.get("sort")
        sort = parse_sort(sort_param) if sort_param else None
        rows = async_to_sync(get_orchestrator().store.list)(sort=sort, **filters)
    except CountryCacheError as exc:
        return error_response(exc)

    return Response(CountrySerializer(rows, many=True).data)


def create_country(request):
    """
    POST /countries
    Create or overwrite a country by name. estimated_gdp is derived from
    population and exchange_rate, never accepted from the client.
    """
    serializer = CountrySerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            {"error": "Validation failed", "details": flatten_errors(serializer.errors)},
            status=status.HTTP_400_BAD_REQUEST,
        )

    orchestrator = get_orchestrator()
    record = Country(**serializer.validated_data)
    record.estimated_gdp = compute_estimate(
        record.population, record.exchange_rate, orchestrator.estimator
    )
    try:
        stored = async_to_sync(orchestrator.store.upsert)(record)
    except CountryCacheError as exc:
        return error_response(exc)

    return Response(CountrySerializer(stored).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
def country_detail(request, name):
    """
    GET /countries/:name  -> return 404 JSON if not found
    DELETE /countries/:name -> delete, return 204 or 404
    """
    store = get_orchestrator().store
    try:
        if request.method == 'GET':
            country = async_to_sync(store.get)(name)
            return Response(CountrySerializer(country).data)
        async_to_sync(store.delete)(name)
    except CountryCacheError as exc:
        return error_response(exc)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
def get_status(request):
    """
    GET /status -> { total_countries, last_refreshed_at }
    last_refreshed_at is the max(last_refreshed_at) across records (or null)
    """
    store = get_orchestrator().store
    try:
        total = async_to_sync(store.count)()
        last = async_to_sync(store.most_recent_refresh)()
    except CountryCacheError as exc:
        return error_response(exc)
    return Response({
        "total_countries": total,
        "last_refreshed_at": last.isoformat() if last else None,
    })


@api_view(['GET'])
def get_summary_image(request):
    """
    GET /countries/image
    Serve the summary image written by the last successful refresh.
    """
    try:
        payload = get_orchestrator().slot.read()
    except CountryCacheError as exc:
        return error_response(exc)
    return HttpResponse(payload, content_type='image/png')
