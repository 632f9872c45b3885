"""
API Constants and Configuration
"""

# Reported by / and /api/health
APP_VERSION = "0.3.0"

# Request limits
MAX_URL_LENGTH = 2048
MAX_FORMAT_ID_LENGTH = 64

# How often a pending download checks whether its client went away
DISCONNECT_POLL_SEC = 0.5

# Status used when the client hung up before the response started (nginx convention)
CLIENT_CLOSED_REQUEST = 499
