"""
Custom hooks for drf-spectacular to customize the OpenAPI schema.
"""


def remove_extra_security_schemes(result, generator, request, public):
    """Drop the auto-detected session/cookie schemes; the API documents TokenAuth only."""
    components = result.get('components', {})
    schemes = components.get('securitySchemes')
    if schemes:
        components['securitySchemes'] = {
            name: scheme for name, scheme in schemes.items() if name == 'TokenAuth'
        }
    return result
