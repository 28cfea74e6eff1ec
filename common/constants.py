"""Control-document field names and well-known identifiers."""

ID_FIELD = "_id"
REV_FIELD = "_rev"
DELETED_FIELD = "_deleted"

SOURCE_FIELD = "source"
TARGET_FIELD = "target"

REPLICATION_ID_FIELD = "replication_id"
REPLICATION_STATE_FIELD = "replication_state"
REPLICATION_STATE_TIME_FIELD = "replication_state_time"
REPLICATION_STATS_FIELD = "replication_stats"
REPLICATION_STATE_REASON_FIELD = "replication_state_reason"

# Fields only the controller may write.
CONTROLLER_FIELDS = frozenset({
    REPLICATION_ID_FIELD,
    REPLICATION_STATE_FIELD,
    REPLICATION_STATE_TIME_FIELD,
    REPLICATION_STATS_FIELD,
    REPLICATION_STATE_REASON_FIELD,
})

STORE_FIELDS = frozenset({ID_FIELD, REV_FIELD, DELETED_FIELD})

DESIGN_DOC_PREFIX = "_design/"

# Bookkeeping keys the replication engine adds to its stats payload.
ENGINE_STATUS_FIELDS = ("status", "ok")
