"""
URL configuration for the messaging API.

URL Structure:
    /messaging/                  GET (?type=...), POST ({action, ...})
    /storage/<path>?token=...    GET, PUT (local storage grants)

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import path

from chat.views import LocalStorageView, MessagingView

app_name = "chat"

urlpatterns = [
    path("messaging/", MessagingView.as_view(), name="messaging"),
    path("storage/<path:storage_path>", LocalStorageView.as_view(), name="storage"),
]
