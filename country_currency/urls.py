"""
URL configuration for country_currency project.

Everything except the admin lives in the countries app; unknown paths and
unhandled errors answer with the same JSON error body as the API views.
"""
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path

from countries import urls as countries_urls
from countries.exceptions import CountryCacheError

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', include(countries_urls)),
]


def _endpoints():
    return sorted({f"/{p.pattern}".rstrip("/") for p in countries_urls.urlpatterns})


def custom_404(request, exception):
    return JsonResponse(
        {"error": "Endpoint not found", "details": {"path": request.path, "endpoints": _endpoints()}},
        status=404,
    )


def custom_500(request):
    return JsonResponse(CountryCacheError().to_response(), status=500)


handler404 = "country_currency.urls.custom_404"
handler500 = "country_currency.urls.custom_500"
