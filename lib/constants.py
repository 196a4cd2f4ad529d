"""Centralized constants for infrastructure lifecycle automation."""

LOGGER_NAME = "infra_lifecycle"

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CRITICAL_FAILURE = 2
EXIT_IMPORTANT_FAILURE = 3
EXIT_ABORTED = 4
EXIT_INTERRUPT = 130

# Timeouts (in seconds)
KUBE_REQUEST_TIMEOUT = 30
CHECK_TIMEOUT = 20
EXEC_TIMEOUT = 60

# Backup/restore exec timeouts scale with database size but stay bounded
BACKUP_BASE_TIMEOUT = 300
BACKUP_MAX_TIMEOUT = 6 * 3600
BACKUP_BYTES_PER_SECOND = 20 * 1024 * 1024

DRAIN_GRACE_PERIOD = 30
DRAIN_POLL_INTERVAL = 5
NAMESPACE_DELETE_TIMEOUT = 300
CLOUD_COMMAND_TIMEOUT = 120

# Parallel fan-out settings
VALIDATION_MAX_WORKERS = 8
TEARDOWN_MAX_WORKERS = 4

# Defaults
DEFAULT_NAMESPACE = "llm-analytics-hub"
DEFAULT_ENVIRONMENT = "dev"
DEFAULT_DATABASE = "llm_analytics"
DEFAULT_STATE_DIR = ".state"
PRODUCTION_ENVIRONMENT = "production"
SYSTEM_NAMESPACE = "kube-system"
SHARED_INFRA_NAMESPACES = ("monitoring", "cert-manager", "ingress-nginx")
RESOURCE_NAME_PREFIX = "llm-analytics-hub"

# Workload label selectors
APP_LABEL_SELECTOR = "app=analytics-api"
TIMESCALEDB_LABEL_SELECTOR = "app=timescaledb"
REDIS_LABEL_SELECTOR = "app=redis"
KAFKA_LABEL_SELECTOR = "app=kafka"
METRICS_SERVER_LABEL_SELECTOR = "k8s-app=metrics-server"

# Cluster expectations
MIN_CLUSTER_REPLICAS = 3
SYSTEM_PODS_WARN_RATIO = 0.8
SERVICE_ACCOUNT_TOKEN_TYPE = "kubernetes.io/service-account-token"  # nosec B105

# Postgres layout inside the database workload
PG_USER = "postgres"
PG_DATA_DIR = "/var/lib/postgresql/data"
PG_WAL_ARCHIVE_DIR = "/var/lib/postgresql/wal-archive"
PG_SCRATCH_DIR = "/tmp/lifecycle"
PG_VERIFY_PORT = 5499
DB_SERVICE_HOST = "timescaledb-service"
DB_SERVICE_PORT = 5432
KAFKA_BOOTSTRAP = "localhost:9092"

# Backup storage
BACKUP_BUCKET_DEFAULT = "llm-analytics-backups"
BACKUP_PREFIX_DEFAULT = "timescaledb"
BACKUP_REGION_DEFAULT = "us-east-1"
BACKUP_RETENTION_DAYS = 30
CATALOG_PREFIX = "catalog"
ARTIFACT_NAME = "artifact"
ENCRYPTION_KEY_ENV_VAR = "INFRA_LIFECYCLE_BACKUP_KEY"  # nosec B105

# Artifact framing
ENCRYPTED_MAGIC = b"ILCENC1\x00"
GZIP_MAGIC = b"\x1f\x8b"
AES_NONCE_SIZE = 12

# Teardown confirmation phrases
CONFIRM_PHRASE = "yes"
PRODUCTION_CONFIRM_PHRASE = "DELETE PRODUCTION"

# Cloud regions used by the provider CLIs
AWS_REGION_DEFAULT = "us-east-1"
GCP_REGION_DEFAULT = "us-central1"

VALID_PROVIDERS = ("k8s", "aws", "gcp", "azure")
VALID_ENVIRONMENTS = ("dev", "staging", "production")
