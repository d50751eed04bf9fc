"""
WSGI config for the Stack IMS project.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'stackims.config.settings')

application = get_wsgi_application()
