import logging

from apps.audit.models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(*, actor, action, entity_type, entity_id, payload=None, order_version=None):
    entry = AuditLog.objects.create(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        order_version=order_version,
        payload=payload or {},
    )
    logger.debug("audit %s on %s %s by %s", action, entity_type, entity_id, getattr(actor, "pk", None))
    return entry
