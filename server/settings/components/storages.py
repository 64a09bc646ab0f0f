"""Django storage configuration for the media lifecycle backend.

Originals and thumbnails live on local or attached block storage under
``MEDIA_ROOT`` so that moves between the uploads and bin namespaces are
same-volume renames.
"""

from typing import Any, Final

from server.settings.components import BASE_DIR, config

MEDIA_ROOT = config(
    'DJANGO_MEDIA_ROOT',
    default=str(BASE_DIR.joinpath('media')),
)

# Storage configuration dictionary
# Uses the media filesystem backend for user files, local storage for static.
# The media backend takes its location from MEDIA_ROOT.
STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'server.apps.media.infrastructure.storage.MediaStorage',
        'OPTIONS': {
            'file_permissions_mode': 0o640,
            'directory_permissions_mode': 0o750,
        },
    },
    'staticfiles': {
        # Keep static files separate from user files
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
