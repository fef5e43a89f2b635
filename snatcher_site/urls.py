from django.urls import include, path

urlpatterns = [
    path("", include("font_snatcher.urls")),
]
