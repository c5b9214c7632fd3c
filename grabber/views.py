from django.conf import settings
from django.db.models import Count, Q, Sum
from django.http import FileResponse, Http404, JsonResponse
from django.utils import timezone
from django.views.decorators.http import require_http_methods

from grabber.apps import STARTED_AT
from grabber.models import FetchEvent
from grabber.service.config import get_downloads_dir


@require_http_methods(['GET'])
def health_view(request):
    """Liveness check."""
    uptime = (timezone.now() - STARTED_AT).total_seconds()
    return JsonResponse({'status': 'ok', 'uptime': round(uptime, 1)})


@require_http_methods(['GET'])
def stats_view(request):
    """
    Storage and delivery statistics.

    Storage figures come from the downloads directory; delivery figures
    from the FetchEvent log written by the bot runner.
    """
    downloads_dir = get_downloads_dir()
    files = []
    if downloads_dir.is_dir():
        files = [p for p in downloads_dir.iterdir() if p.is_file()]

    totals = FetchEvent.objects.aggregate(
        total=Count('id'),
        succeeded=Count('id', filter=Q(success=True)),
        cache_hits=Count('id', filter=Q(cache_hit=True)),
        link_deliveries=Count('id', filter=Q(delivery=FetchEvent.DELIVERY_LINK)),
        bytes_served=Sum('size_bytes', filter=Q(success=True)),
    )
    errors = dict(
        FetchEvent.objects.filter(success=False)
        .order_by()
        .values('error')
        .annotate(count=Count('id'))
        .values_list('error', 'count')
    )
    by_origin = dict(
        FetchEvent.objects.order_by()
        .values('origin')
        .annotate(count=Count('id'))
        .values_list('origin', 'count')
    )

    return JsonResponse(
        {
            'storage': {
                'files': len(files),
                'bytes': sum(p.stat().st_size for p in files),
                'max_file_age_hours': settings.CLIPGRAB_MAX_FILE_AGE_HOURS,
                'cleanup_interval_minutes': settings.CLIPGRAB_CLEANUP_INTERVAL_MINUTES,
            },
            'jobs': {
                'total': totals['total'],
                'succeeded': totals['succeeded'],
                'failed': totals['total'] - totals['succeeded'],
                'cache_hits': totals['cache_hits'],
                'link_deliveries': totals['link_deliveries'],
                'bytes_served': totals['bytes_served'] or 0,
                'errors': errors,
                'by_origin': by_origin,
            },
        }
    )


@require_http_methods(['GET', 'HEAD'])
def download_view(request, filename):
    """
    Serve a fetched artifact for the link delivery fallback.

    Only plain file names inside the downloads directory are served.
    """
    downloads_dir = get_downloads_dir().resolve()
    path = (downloads_dir / filename).resolve()
    if path.parent != downloads_dir or not path.is_file():
        raise Http404('File not found')
    return FileResponse(open(path, 'rb'), as_attachment=True, filename=path.name)
