from django.db import models


class FetchEvent(models.Model):
    """Outcome of one fetch job, written by the bot runner"""

    DELIVERY_INBAND = 'inband'
    DELIVERY_LINK = 'link'

    DELIVERY_CHOICES = [
        (DELIVERY_INBAND, 'In-band'),
        (DELIVERY_LINK, 'Link'),
    ]

    requester_id = models.CharField(max_length=64, db_index=True)
    url = models.URLField(max_length=2048)
    fingerprint = models.CharField(max_length=64, db_index=True)
    origin = models.CharField(max_length=32)
    success = models.BooleanField(default=False)
    error = models.CharField(max_length=32, null=True, blank=True)
    size_bytes = models.BigIntegerField(null=True, blank=True)
    duration_ms = models.IntegerField(default=0)
    cache_hit = models.BooleanField(default=False)
    delivery = models.CharField(max_length=10, choices=DELIVERY_CHOICES, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        status = 'ok' if self.success else self.error
        return f'{self.origin} {self.url} ({status})'
