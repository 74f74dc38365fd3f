"""
Security headers for the quiz API.
"""
from django.conf import settings

DOC_PATHS = ['/api/docs/', '/api/redoc/', '/api/schema/']


class SecurityHeadersMiddleware:
    """Add security headers to all responses."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)

        # Prevent clickjacking
        response['X-Frame-Options'] = 'DENY'

        # Prevent MIME type sniffing
        response['X-Content-Type-Options'] = 'nosniff'

        # Referrer Policy
        response['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # Audio questions record from the page itself; everything else stays off
        response['Permissions-Policy'] = 'geolocation=(), microphone=(self), camera=()'

        # Answers and scores are private to the learner
        if request.path.startswith('/api/') and request.path not in DOC_PATHS:
            response['Cache-Control'] = 'no-store, no-cache, must-revalidate, private'
            response['Pragma'] = 'no-cache'

        # CSP - Skip for API docs
        if not settings.DEBUG or '/api/docs' not in request.path:
            response['Content-Security-Policy'] = (
                "default-src 'self'; "
                "script-src 'self' 'unsafe-inline' cdn.jsdelivr.net; "
                "style-src 'self' 'unsafe-inline' cdn.jsdelivr.net; "
                "img-src 'self' data: cdn.jsdelivr.net; "
                "media-src 'self' blob:; "
                "frame-ancestors 'none'"
            )

        return response
