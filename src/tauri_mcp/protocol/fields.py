"""Protocol constants.

Keep these in one place to avoid stringly-typed envelope handling.
"""

# Request envelope
COMMAND = "command"
PAYLOAD = "payload"
ID = "id"

# Response envelope
SUCCESS = "success"
DATA = "data"
ERROR = "error"

# Bare-string payloads are shorthand for this single field.
WINDOW_LABEL = "window_label"

DEFAULT_ERROR = "Command failed without specific error"

DELIMITER = b"\n"
