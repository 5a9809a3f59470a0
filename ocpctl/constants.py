# The name of the project
PROJECT_NAME = "ocpctl"

# The environment variable for the directory where the ocpctl data is saved
HOME_ENV_VAR = "OCPCTL_HOME"

# The environment variable for the process-wide log level
LOG_LEVEL_ENV_VAR = "OPENSHIFT_LOG_LEVEL"

# Object keys under the "<cluster-name>/" prefix
STATE_ARCHIVE_NAME = "cluster-state.tar.gz"
METADATA_FILE_NAME = "metadata.json"
AUTH_BACKUP_NAME = "auth-backup.tar.gz"

# S3 accepts at most 1000 keys per DeleteObjects request
S3_DELETE_BATCH_SIZE = 1000

# Region where CreateBucket must not carry a LocationConstraint
S3_DEFAULT_REGION = "us-east-1"

# Installer AMIs and the DNS zone only exist here
SUPPORTED_REGIONS = ["us-east-2"]

DEFAULT_REGION = "us-east-2"
DEFAULT_BUCKET = "openshift-clusters-119175775298-us-east-2"

MAX_CLUSTER_NAME_LENGTH = 20

OPENSHIFT_MIRROR_URL = "https://mirror.openshift.com/pub/openshift-v4/clients/ocp"
OPENSHIFT_GRAPH_URL = "https://api.openshift.com/api/upgrades_info/v1/graph"
OPENSHIFT_FALLBACK_VERSION = "4.16.45"

HELM_VERSION = "3.14.0"

PMM_HELM_REPO_NAME = "percona"
PMM_HELM_REPO_URL = "https://percona.github.io/percona-helm-charts/"
PMM_ADMIN_USER = "admin"
PMM_SECRET_NAME = "pmm-secret"
PMM_ROUTE_NAME = "pmm-https"
