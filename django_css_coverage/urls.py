from django.urls import path

from . import views

app_name = "css_coverage"

urlpatterns = [
    path("check-css/", views.check_css, name="check_css"),
]
