"""Main URL mapping configuration file.

The media lifecycle is driven by an external HTTP layer; this project only
exposes the admin site.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path('admin/', admin.site.urls),
]
