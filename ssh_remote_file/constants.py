DEFAULT_SSH_PORT = 22
DEFAULT_MAX_SESSIONS = 3
DEFAULT_PERMISSIONS = "0644"
DEFAULT_COMMAND_TIMEOUT_SECONDS = 60
