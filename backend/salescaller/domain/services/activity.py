"""
Lead Activity Log
Append-only timeline entries written by every workflow that changes state
"""
from typing import Any, Dict, Optional

from salescaller.domain.interfaces.store import LEAD_ACTIVITIES, Store
from salescaller.domain.models.lead import ActivityType, LeadActivity


async def record_activity(
    store: Store,
    lead_id: str,
    activity_type: ActivityType,
    title: str,
    content: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None
) -> Dict[str, Any]:
    """Append one LeadActivity and return the stored record."""
    activity = LeadActivity(
        lead_id=lead_id,
        type=activity_type,
        title=title,
        content=content,
        metadata=metadata or {},
        user_id=user_id,
    )
    return await store.create(LEAD_ACTIVITIES, activity.to_record())
