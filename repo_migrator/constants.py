"""Shared constants for the repository migration orchestrator."""

# HTTP status codes
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_RATE_LIMIT = 429
HTTP_SERVER_ERROR_MIN = 500

# Rate limit response headers
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RETRY_AFTER_HEADER = "Retry-After"

# Run classification thresholds (success rate, percent)
SUCCESS_RATE_OK = 95.0
SUCCESS_RATE_WARNING = 80.0

# Process exit codes derived from the run classification
EXIT_OK = 0
EXIT_WARNING = 1
EXIT_ERROR = 2

# Alert types raised by the orchestration core
ALERT_HEALTH_CHECK_FAILED = "HealthCheckFailed"
ALERT_MIGRATION_STALLED = "MigrationStalled"
ALERT_MIGRATION_FAILURES = "MigrationFailures"
ALERT_MIGRATION_COMPLETE = "MigrationComplete"
ALERT_STATUS_QUERY_FAILED = "StatusQueryFailed"
ALERT_BATCH_COMPLETE = "BatchRunComplete"
ALERT_RUN_ABORTED = "MigrationRunAborted"
ALERT_TEST = "TestAlert"

# Hex colours per severity, shared by the chat and email channels
SEVERITY_COLORS = {
    "CRITICAL": "#8B0000",
    "HIGH": "#FF0000",
    "MEDIUM": "#FFA500",
    "LOW": "#FFD700",
    "INFO": "#36A64F",
}

# Metric names recorded by the state tracker
METRIC_PENDING = "pending"
METRIC_IN_PROGRESS = "in_progress"
METRIC_MIGRATED = "migrated"
METRIC_FAILED = "failed"

# Artifact file names
STATUS_SNAPSHOT_FILE = "status_snapshot.json"
RUN_SUMMARY_FILE = "run_summary.yaml"
CHECKPOINT_FILE = ".migration_checkpoint.json"
REPORT_FILE = "migration_report.yaml"
