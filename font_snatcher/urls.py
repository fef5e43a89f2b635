from django.urls import path

from . import views

app_name = "font_snatcher"

urlpatterns = [
    path("api/extract", views.extract, name="extract"),
    path("api/extract-fonts", views.extract_fonts, name="extract_fonts"),
    path("api/match", views.match, name="match"),
    path("api/font", views.font_proxy, name="font_proxy"),
]
