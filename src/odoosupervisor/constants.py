"""Shared constants for odoo-supervisor."""

CONFIG_FILE_MODE = 0o640
DIR_MODE = 0o755

OPTION_PREFIX = "conf."
CONFIG_SECTION = "options"

DEFAULT_ERP_CONF_PATH = "/etc/odoo/erp.conf"
DEFAULT_SETTINGS_FILE = "/etc/odoo/supervisor.yml"
DEFAULT_DATA_DIR = "/var/lib/odoo"
DEFAULT_ODOO_SOURCE = "/opt/odoo"
DEFAULT_ODOO_VERSION = "19.0"
DEFAULT_ODOO_PORT = 8069
EXTRA_ADDONS_DIR = "/mnt/extra-addons"

STATE_FILE_NAME = ".container-state"
UPGRADE_LOCK_NAME = ".upgrade.lock"
UPGRADE_LOG_DIR_NAME = "logs"
UPGRADE_RUN_PREFIX = "upgrade-run-"
UPGRADE_RESULT_FILE = "result.json"
UPGRADE_LATEST_LINK = "latest"
DEFAULT_UPGRADE_KEEP = 5

SYNCED_ADDONS_DIR = "/mnt/synced-addons"
SYNCED_ADDONS_PATHS = ("/mnt/synced-addons", "/mnt/synced-addons/oc-addons")

APPLICATION_BINARY = "odoo-bin"
RUN_AS_USER = "odoo"

SYSTEM_DATABASES = ("postgres", "template0", "template1")

MIB = 1024 * 1024
GIB = 1024 * MIB
FALLBACK_RAM_BYTES = 2 * GIB
MEMORY_SOFT_MIN_BYTES = 128 * MIB
MEMORY_SOFT_MAX_BYTES = 2560 * MIB
MEMORY_RAM_PERCENT = 85
MEMORY_HARD_RATIO = 1.3

DEFAULT_WATCHER_INTERVAL = 30.0
