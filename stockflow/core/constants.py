URGENCY_CRITICAL = "critical"
URGENCY_HIGH = "high"
URGENCY_MEDIUM = "medium"
URGENCY_LOW = "low"

URGENCY_LEVELS = (URGENCY_CRITICAL, URGENCY_HIGH, URGENCY_MEDIUM, URGENCY_LOW)
URGENCY_RANK = {level: rank for rank, level in enumerate(URGENCY_LEVELS)}

SYNC_STATUS_RUNNING = "running"
SYNC_STATUS_COMPLETED = "completed"
SYNC_STATUS_FAILED = "failed"

STUCK_RUN_REASON = "stuck, superseded"

PO_STATUS_DRAFT = "draft"
PO_STATUS_SUBMITTED = "submitted"

UNKNOWN_VENDOR_NAME = "Unknown Vendor"
