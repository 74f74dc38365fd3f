from rest_framework.throttling import UserRateThrottle


class SubmissionRateThrottle(UserRateThrottle):
    """Strict rate limit for final submissions."""
    scope = 'submission'
    rate = '10/minute'


class UploadRateThrottle(UserRateThrottle):
    """Recordings and file uploads."""
    scope = 'upload'
    rate = '30/minute'


class BurstRateThrottle(UserRateThrottle):
    """General burst protection for authenticated users."""
    scope = 'burst'
    rate = '60/minute'
