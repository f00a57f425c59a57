"""
Document code generation.
"""
import uuid

from django.utils import timezone


def generate_code(prefix):
    """
    Build a unique document code such as ``INV-20240131-3F9A1C``.
    Used when the caller does not supply its own code.
    """
    return f"{prefix}-{timezone.now():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"
