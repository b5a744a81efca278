"""
API throttling classes for the importer endpoints.
"""

from rest_framework.permissions import SAFE_METHODS
from rest_framework.throttling import UserRateThrottle


class CrawlTriggerThrottle(UserRateThrottle):
    """
    Throttle for crawl start/restart endpoints.

    Rate: 30 requests per hour per user. Listing (GET) is not throttled.
    """

    rate = '30/hour'
    scope = 'crawl_trigger'

    def allow_request(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return super().allow_request(request, view)


class InferenceThrottle(UserRateThrottle):
    """
    Throttle for rule generation, which spends layout-model calls.

    Rate: 20 requests per hour per user.
    """

    rate = '20/hour'
    scope = 'inference'


class MigrationThrottle(UserRateThrottle):
    """
    Throttle for bulk migration endpoints.

    Rate: 60 requests per hour per user.
    """

    rate = '60/hour'
    scope = 'migration'
