from django.urls import path

from storage.views import KeyValueView

app_name = "storage"

urlpatterns = [
    path("<str:key>", KeyValueView.as_view(), name="kv-detail"),
]
