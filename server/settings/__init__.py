"""Main settings file for the image drive project.

Settings are split into components and per-environment overrides.
``DJANGO_ENV`` picks the environment file, ``development`` by default.
"""

from os import environ

from split_settings.tools import include, optional

_ENV = environ.setdefault('DJANGO_ENV', 'development')

_base_settings = (
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/drive.py',

    # Select the right env:
    f'environments/{_ENV}.py',

    # Optionally override some settings:
    optional('environments/local.py'),
)

include(*_base_settings)
