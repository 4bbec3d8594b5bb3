"""
Django-Criteria Views

Provides Django class-based views serving criteria list endpoints.

Features:
- CriteriaListView for one model
- CriteriaModelView routing to a model by URL name
- Every request format accepted over GET query strings or a JSON body
"""

import json
import logging

from django.views import View

from django_criteria.query import CriteriaQuery
from django_criteria.response import CriteriaResponse

logger = logging.getLogger("django_criteria")


class CriteriaListView(View):
    """
    List endpoint for one model.

    Example:
        # views.py
        from django_criteria.views import CriteriaListView

        class MovieQuoteListView(CriteriaListView):
            model = "Movie_Quotes"

        # urls.py
        urlpatterns = [
            path("api/movie-quotes/", MovieQuoteListView.as_view()),
        ]

        # Requests:
        # GET /api/movie-quotes/?startRow=0&endRow=100     -> AG-Grid body
        # GET /api/movie-quotes/?filter[quote][contains]=x -> standard body
    """

    # Required: model name (exact case), ModelSchema or Django model class
    model = None

    # Optional: override STRICT_FILTERS for this view
    strict = None

    # Optional: database alias
    using = "default"

    http_method_names = ["get", "post", "options"]

    def get_model(self):
        """Get the model to query. Override for dynamic model selection."""
        return self.model

    def get_params(self, request):
        """
        Extract raw parameters from the request.

        GET uses the query string; POST accepts a JSON object body and
        falls back to form data. Returns None for an unparsable body.
        """
        if request.method == "GET":
            return request.GET

        if request.body and request.content_type == "application/json":
            try:
                body = json.loads(request.body)
            except json.JSONDecodeError:
                return None
            return body if isinstance(body, dict) else None
        return request.POST

    def get(self, request, *args, **kwargs):
        return self.handle_query(request)

    def post(self, request, *args, **kwargs):
        return self.handle_query(request)

    def handle_query(self, request):
        model = self.get_model()
        if model is None:
            return CriteriaResponse.error("NOT_FOUND", "Model not configured").to_json_response()

        params = self.get_params(request)
        if params is None:
            return CriteriaResponse.error("BAD_REQUEST", "Invalid JSON in request body").to_json_response()

        logger.debug("Criteria request for %s with %d params", model, len(params))
        query = CriteriaQuery(model, using=self.using, strict=self.strict)
        return query.run(params).to_json_response()


class CriteriaModelView(CriteriaListView):
    """
    Model list endpoint with URL-based model selection.

    Example:
        # urls.py
        urlpatterns = [
            path("api/<str:model_name>/", CriteriaModelView.as_view()),
        ]

        # GET /api/Movies/ -> Movies schema from DJANGO_CRITERIA['MODELS']
    """

    # Optional: restrict which model names may be queried (exact case)
    allowed_models = []

    def get_model(self):
        model_name = self.kwargs.get("model_name", "")
        if self.allowed_models and model_name not in self.allowed_models:
            return None
        return model_name or None
