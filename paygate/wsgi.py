"""WSGI config for the paygate project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'paygate.settings')

application = get_wsgi_application()
