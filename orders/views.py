"""Plain views for the service root and health check."""

from django.http import HttpResponse, JsonResponse
from django.utils import timezone


def index(request):
    """Service banner."""
    return HttpResponse("Midtrans payment notification service")


def health(request):
    return JsonResponse({"status": "OK", "timestamp": timezone.now().isoformat()})
