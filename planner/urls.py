from django.urls import path

from planning.api import api

urlpatterns = [
    path("api/", api.urls),
]
