"""
WSGI config for the clipgrab project.

Serves the health, stats and downloads endpoints. The bot itself runs in a
separate process (./manage.py runbot).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'clipgrab.settings')

application = get_wsgi_application()
