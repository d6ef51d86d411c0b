"""
constants.py
- Project-wide constants shared across logic and runner scripts.
- Includes retry intervals, debounce timers, Machine API coordinates and label defaults.
"""

# --- Retry Timing Defaults ---
DEFAULT_RETRY_INTERVALS = [2, 10, 60, 300, 900]  # in seconds

# --- Config File Debounce ---
DEBOUNCE_TIME = 5  # seconds between accepted change events for the same file

# --- Runner Timing ---
DEFAULT_RESYNC_INTERVAL = 60  # seconds between full MachineSet resyncs
RETRY_CHECK_INTERVAL = 2  # seconds between checks for failed keys due a retry

# --- Convergence Wait ---
MAX_WAIT_TIME = 30  # seconds
POLL_INTERVAL = 1  # seconds

# --- Machine API ---
MACHINE_API_GROUP = "machine.openshift.io"
MACHINE_API_VERSION = "v1beta1"
MACHINESET_PLURAL = "machinesets"
MACHINE_PLURAL = "machines"
DEFAULT_NAMESPACE = "openshift-machine-api"

# --- Labels & Annotations ---
PROPAGATED_LABELS_ANNOTATION = "managed-node-metadata/propagated-labels"

# Node labels owned by the kubelet or the platform; never overwritten from a MachineSet.
DEFAULT_PROTECTED_NODE_LABEL_PREFIXES = [
    "node-role.kubernetes.io/",
    "node.kubernetes.io/",
    "kubernetes.io/",
    "beta.kubernetes.io/",
    "node.openshift.io/",
]
