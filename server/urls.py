"""Root URL configuration.

The drive itself is exposed through ``server.apps.drive.gate.DriveGate``;
only the admin is routed over HTTP.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path('admin/', admin.site.urls),
]
