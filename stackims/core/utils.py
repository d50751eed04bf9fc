"""Utility functions for activity logging"""
import logging

from .models import ActivityLog

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def log_activity(request=None, action=None, model_name='', object_id='',
                 changes=None, user=None, object_name=None):
    """
    Create an activity log entry

    Args:
        request: Django request object (for user and IP) - optional if user is provided
        action: Action type (PRODUCT_UPDATED, INSIGHT_SAVED, ...)
        model_name: Name of the model being acted upon
        object_id: ID of the object (as string)
        changes: Dictionary of changes made
        user: Optional user override (defaults to request.user if request provided)
        object_name: Human-readable name of the object

    Returns the created ActivityLog, or None when logging was skipped or failed.
    """
    if not action:
        logger.warning("Activity log skipped: missing action")
        return None

    audit_user = user
    if audit_user is None and request is not None and hasattr(request, 'user'):
        audit_user = request.user
    if audit_user is not None and not getattr(audit_user, 'is_authenticated', False):
        audit_user = None

    try:
        return ActivityLog.objects.create(
            user=audit_user,
            action=action,
            model_name=model_name or '',
            object_id=str(object_id) if object_id is not None else '',
            object_name=object_name,
            changes=changes or {},
            ip_address=get_client_ip(request) if request else None,
        )
    except Exception as e:
        # Activity logging must not fail the main operation
        logger.error(f"Failed to create activity log: {str(e)}")
        return None
