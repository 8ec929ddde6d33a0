"""Names shared by every telemetry implementation."""

TRACER_NAME = "token_broker"
INSTRUMENTATION_VERSION = "1.0.0"

SPAN_TOKEN_GENERATE = "TokenBroker.Token.Generate"
SPAN_UPSTREAM_AUTH = "TokenBroker.Upstream.Auth"
SPAN_CONFIG_WRITE = "TokenBroker.Config.Write"
SPAN_CONFIG_READ = "TokenBroker.Config.Read"
SPAN_ROLE_WRITE = "TokenBroker.Role.Write"
SPAN_ROLE_READ = "TokenBroker.Role.Read"
SPAN_ROLE_LIST = "TokenBroker.Role.List"
SPAN_ROLE_DELETE = "TokenBroker.Role.Delete"
SPAN_HEALTH_CHECK = "TokenBroker.Health.Check"

EVENT_TOKEN_GENERATED = "token.generated"
EVENT_TOKEN_FAILED = "token.failed"
EVENT_UPSTREAM_AUTH_START = "upstream.auth.start"
EVENT_UPSTREAM_AUTH_SUCCESS = "upstream.auth.success"
EVENT_UPSTREAM_AUTH_FAILED = "upstream.auth.failed"
EVENT_CONFIG_UPDATED = "config.updated"
EVENT_CONFIG_FAILED = "config.failed"
EVENT_ROLE_UPDATED = "role.updated"
EVENT_ROLE_FAILED = "role.failed"
EVENT_ERROR = "error"

ATTR_ROLE = "token_broker.role"
ATTR_CREDENTIAL_TYPE = "credential_type"
ATTR_ROLE_IDS_COUNT = "role_ids_count"
ATTR_ATTEMPT = "attempt"
ATTR_OPERATION = "operation"
ATTR_FOUND = "found"
ATTR_SUCCESS = "success"
ATTR_DURATION_MS = "duration_ms"
ATTR_UPSTREAM_DURATION_MS = "upstream_duration_ms"
ATTR_ERROR_OPERATION = "error.operation"
ATTR_ERROR_SEVERITY = "error.severity"
ATTR_ERROR_TYPE = "error.type"

SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_CRITICAL = "critical"

METRIC_TOKEN_GENERATES = "token_broker_token_generates_total"
METRIC_TOKEN_ERRORS = "token_broker_token_errors_total"
METRIC_UPSTREAM_AUTH = "token_broker_upstream_auth_total"
METRIC_CONFIG_WRITES = "token_broker_config_writes_total"
METRIC_CONFIG_READS = "token_broker_config_reads_total"
METRIC_ROLE_WRITES = "token_broker_role_writes_total"
METRIC_ROLE_READS = "token_broker_role_reads_total"
METRIC_ERRORS = "token_broker_errors_total"
METRIC_TOKEN_GENERATE_DURATION = "token_broker_token_generate_duration_ms"
METRIC_UPSTREAM_AUTH_DURATION = "token_broker_upstream_auth_duration_ms"

DURATION_BUCKETS_MS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)
