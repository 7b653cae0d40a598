# tool_constants.py
"""
Static values shared by the serving client, the cloud sync client and the registry.
"""

_ENV_PREFIX = "MODELKEEPER_"

TOOL_NAME = "modelkeeper"

# ----------------------------
# Serving endpoint (Ollama wire format)
# ----------------------------
DEFAULT_SERVING_HOST = "http://localhost:11434"
DEFAULT_SERVING_TIMEOUT = 30.0
DEFAULT_HEALTH_TIMEOUT = 5.0

ROUTE_LIST = "/api/tags"
ROUTE_PULL = "/api/pull"
ROUTE_SHOW = "/api/show"
ROUTE_GENERATE = "/api/generate"
ROUTE_DELETE = "/api/delete"

# ----------------------------
# Cloud sync (Google Drive)
# ----------------------------
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_OPERATION_TIMEOUT = 60.0
DEFAULT_AUTH_TIMEOUT = 300.0

TRANSPORT_INPROCESS = "inprocess"
TRANSPORT_SUBPROCESS = "subprocess"
TRANSPORTS = (TRANSPORT_INPROCESS, TRANSPORT_SUBPROCESS)

ROOT_BACKUP_FOLDER = "modelkeeper-models"
BACKUP_SUBFOLDERS = ("serving-models", "trained-models", "backups")

# ----------------------------
# Local layout
# ----------------------------
MANIFEST_FILENAME = "models.json"
CONFIG_FILENAME = "config.json"
CREDENTIALS_FILENAME = "gdrive-credentials.json"
TOKEN_FILENAME = "gdrive-token.json"
MODEL_METADATA_FILENAME = "model.json"
LINEAGE_FILENAME = "lineage.json"
TRAINING_DATA_STEM = "training-data"

SOURCE_SERVING = "serving-origin"
SOURCE_TRAINED = "trained"
SOURCE_RESTORED = "restored"
MODEL_SOURCES = (SOURCE_SERVING, SOURCE_TRAINED, SOURCE_RESTORED)


def sanitize_model_name(name: str) -> str:
    """
    Map a model identifier to a directory name.

    Tag separators and namespace slashes are replaced, e.g. ``llama3:8b`` -> ``llama3_8b``.
    """
    return name.strip().replace(":", "_").replace("/", "_").replace("\\", "_")
