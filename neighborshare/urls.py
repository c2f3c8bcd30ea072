from django.urls import include, path

urlpatterns = [
    path("api/rto/", include("rto.urls")),
]
