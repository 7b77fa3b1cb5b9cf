"""
Audit logging service for destructive or overriding inventory actions.
"""
from stockroom.models.audit_log import AuditLog, AuditAction
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    company_id: int,
    action: AuditAction,
    resource_type: str = None,
    resource_id: int = None,
    details: dict = None,
    user_id: int = None
):
    """
    Add an audit entry to the current unit of work.

    Args:
        session: Database session
        company_id: Company the action belongs to
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'transaction')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)
        user_id: Acting user, when known
    """
    details_json = None
    if details:
        try:
            details_json = json.dumps(details, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to serialize audit details: {e}")
            details_json = str(details)

    audit_entry = AuditLog(
        company_id=company_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details_json
    )

    session.add(audit_entry)
    # Note: Caller is responsible for committing the session

    logger.info(f"Audit log created: {action.value} by user {user_id} on {resource_type} {resource_id}")
    return audit_entry


def get_audit_logs(
    session,
    company_id: int,
    limit: int = 100,
    offset: int = 0,
    action: AuditAction = None,
    resource_type: str = None
):
    """Get audit logs for a company, newest first."""
    query = session.query(AuditLog).filter(AuditLog.company_id == company_id)

    if action:
        query = query.filter(AuditLog.action == action)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)

    return query.order_by(AuditLog.id.desc()).limit(limit).offset(offset).all()
