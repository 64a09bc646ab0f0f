"""Main settings file.

Settings are split into components and merged with ``django-split-settings``.
Values that differ between environments are read from the environment or
from ``config/.env`` with ``python-decouple``.
"""

import django_stubs_ext
from split_settings.tools import include, optional

# Monkeypatching Django, so stubs will work for all generics,
# see: https://github.com/typeddjango/django-stubs/tree/master/ext
django_stubs_ext.monkeypatch()

_base_settings = (
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/media.py',
    # Select the right env:
    optional('environments/local.py'),
)

# Include settings:
include(*_base_settings)
