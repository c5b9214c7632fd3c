from django.apps import AppConfig
from django.utils import timezone

STARTED_AT = timezone.now()


class GrabberConfig(AppConfig):
    name = 'grabber'
    default_auto_field = 'django.db.models.BigAutoField'
