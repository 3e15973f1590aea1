import logging

from django.conf import settings
from django.http import JsonResponse

logger = logging.getLogger(__name__)

DEFAULT_JSON_ONLY_VIEWS = (
    "orders-create-transaction",
    "orders-notification",
    "orders-webhook",
)


def json_only_view_names():
    return frozenset(getattr(settings, "ORDERS_JSON_ONLY_VIEWS", DEFAULT_JSON_ONLY_VIEWS))


def is_json(request):
    # content_type has parameters such as charset already stripped
    content_type = (request.content_type or "").lower()
    return content_type == "application/json" or content_type.endswith("+json")


class RequireJSONForConfiguredViews:
    """Answer 415 to POSTs that are not JSON on the payment routes.

    The notification and transaction endpoints parse the body as JSON, so a
    form post is refused before the view runs. Route names come from
    `settings.ORDERS_JSON_ONLY_VIEWS`, read per request.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_view(self, request, view_func, view_args, view_kwargs):
        if request.method != "POST" or is_json(request):
            return None
        match = request.resolver_match
        if match is None or match.view_name not in json_only_view_names():
            return None

        logger.info(
            "Refused %s body on %s", request.content_type or "empty", match.view_name)
        return JsonResponse(
            {
                "status": "ERROR",
                "message": "Send the request body as JSON with Content-Type: application/json",
            },
            status=415,
        )
