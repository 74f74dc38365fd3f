from django.conf import settings

DEFAULTS = {
    'AUTOSAVE_INTERVAL_SECONDS': 30.0,
    'DEADLINE_TICK_SECONDS': 1.0,
    'AMPLITUDE_POLL_SECONDS': 0.1,
    'MAX_UPLOAD_BYTES': 50 * 1024 * 1024,
    'UPLOAD_PREFIX': 'quiz-uploads/',
    'AUDIO_MIME_TYPES': [
        'audio/webm;codecs=opus',
        'audio/webm',
        'audio/ogg;codecs=opus',
        'audio/mp4',
    ],
    'HTTP_TIMEOUT_SECONDS': 30.0,
    'UPLOAD_SETTLE_SECONDS': 60.0,
}


def engine_setting(name):
    """Read a QUIZ_ENGINE setting, falling back to the built-in default."""
    configured = getattr(settings, 'QUIZ_ENGINE', {}) or {}
    if name in configured:
        return configured[name]
    return DEFAULTS[name]


# Default for optional arguments where None means "clear the value".
UNSET = object()
