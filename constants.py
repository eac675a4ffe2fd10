import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:8080,http://localhost:5173,http://localhost:3000",
    ).split(",")
    if origin.strip()
]

EXECUTION_BACKEND = os.getenv("EXECUTION_BACKEND", "subprocess")
PISTON_URL = os.getenv("PISTON_URL", "https://emkc.org/api/v2/piston/execute")
EXECUTION_TIMEOUT_SECONDS = float(os.getenv("EXECUTION_TIMEOUT_SECONDS", 10))

STATS_INTERVAL_SECONDS = float(os.getenv("STATS_INTERVAL_SECONDS", 60))

# Policy constants, not read from the environment
GRACE_PERIOD_SECONDS = 5 * 60
ROOM_ID_LENGTH = 8

DEFAULT_LANGUAGE = "javascript"
SUPPORTED_LANGUAGES = ("javascript", "python", "html")

DEFAULT_TEMPLATES = {
    "javascript": '// Welcome to CodeSync!\nconsole.log("Hello, World!");',
    "python": '# Welcome to CodeSync!\nprint("Hello, World!")',
    "html": (
        "<!DOCTYPE html>\n<html>\n<head>\n  <title>CodeSync</title>\n</head>\n"
        "<body>\n  <h1>Hello, World!</h1>\n</body>\n</html>"
    ),
}

# Interpreter command per language for the subprocess execution backend
SUBPROCESS_COMMANDS = {
    "python": ["python3", "-I", "-"],
    "javascript": ["node", "-"],
}

# Messages queued per socket before a non-reading peer is disconnected
OUTBOX_MAX_MESSAGES = int(os.getenv("OUTBOX_MAX_MESSAGES", 1024))
