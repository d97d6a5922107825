"""
Configuration constants for jobfan.
"""

# Capacity
DEFAULT_JOBS = "100%"
UNBOUNDED_CAPACITY_TOKENS = ("0", "unbounded", "inf")

# Input
DEFAULT_DELIMITER = "\n"
READ_CHUNK_SIZE = 65536

# Local execution
LOCAL_HOST = ":"
SHELL = "/bin/sh"

# Remote execution
DEFAULT_SSH_COMMAND = "ssh"
DEFAULT_SCP_COMMAND = "scp"
DEFAULT_REMOTE_BASE = ".jobfan"
SSH_CONNECT_TIMEOUT = 10
SSH_TRANSPORT_FAILURE = 255
CORE_PROBE_COMMAND = "nproc 2>/dev/null || getconf _NPROCESSORS_ONLN"

# Retries
DEFAULT_MAX_RETRIES = 0
DEFAULT_RETRY_BASE_DELAY = 0.5

# Output
TAG_SEPARATOR = "\t"

# Exit codes
EXIT_SUCCESS = 0
MAX_REPORTED_FAILURES = 100
EXIT_TOO_MANY_FAILURES = 101
EXIT_CANCELLED = 130
EXIT_FATAL = 255

# Exit status recorded for jobs that never ran to an exit status
NO_EXIT_STATUS = -1

# Job log columns
JOBLOG_COLUMNS = [
    "Seq", "Host", "Starttime", "JobRuntime", "Send",
    "Receive", "Exitval", "Signal", "Command",
]
