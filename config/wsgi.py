"""WSGI config for the car rental project.

Serves the Django admin; point DJANGO_SETTINGS_MODULE at
config.settings.prod in deployment.
"""

import os
from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.dev')

application = get_wsgi_application()
