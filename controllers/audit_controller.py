import logging
import math
import uuid
from typing import Optional

from database import db
from core.timeutil import now_iso
from models.audit import AuditLog, AuditPage

logger = logging.getLogger(__name__)


def get_client_ip(request) -> Optional[str]:
    """Real client IP: X-Forwarded-For first, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


async def log_audit(
    user,
    action: str,
    module: str,
    resource: str,
    description: str,
    resource_id: str = None,
    ip_address: str = None,
):
    """Append an audit entry. Failures are logged, never raised."""
    try:
        await db.audit_logs.insert_one({
            "id": str(uuid.uuid4()),
            "uid": user.uid,
            "display_name": user.display_name,
            "role_id": user.role_id,
            "action": action,
            "module": module,
            "resource": resource,
            "resource_id": resource_id,
            "description": description,
            "ip_address": ip_address,
            "timestamp": now_iso(),
        })
    except Exception as e:
        logger.warning(f"Audit entry '{action} {module}/{resource}' was not written: {e}")


async def get_audit_logs(
    page: int = 1,
    limit: int = 25,
    module: str = None,
    action: str = None,
    uid: str = None,
    date_from: str = None,
    date_to: str = None,
) -> AuditPage:
    query = {}
    for field, value in (("module", module), ("action", action), ("uid", uid)):
        if value:
            query[field] = value
    # timestamps are stored as UTC ISO strings, so day bounds compare lexically
    if date_from or date_to:
        window = {}
        if date_from:
            window["$gte"] = date_from
        if date_to:
            window["$lte"] = f"{date_to}T23:59:59.999999+00:00"
        query["timestamp"] = window

    total = await db.audit_logs.count_documents(query)
    docs = await db.audit_logs.find(query, {"_id": 0}) \
        .sort("timestamp", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(limit)

    return AuditPage(
        data=[AuditLog(**d) for d in docs],
        total=total,
        page=page,
        pages=math.ceil(total / limit) if limit else 1,
        limit=limit,
    )
