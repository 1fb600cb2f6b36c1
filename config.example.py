# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
This file exists to make the repo self-documenting even without opening .env.

Usage:
  1) Put the variables you need into `.env` (gitignored) or export them
  2) Run `maday`
"""

ENV_VARS = {
    # App / logging
    "MADAY_APP_NAME": "App display name (default: maday).",
    "MADAY_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Connectors
    "MADAY_CONSOLE_ENABLED": "Run the console REPL (true/false, default: true).",
    # Tracker
    "MADAY_TICK_SECONDS": "Tracker tick interval in seconds (default: 1.0, min 0.1).",
    # Paths (gitignored)
    "MADAY_DATA_DIR": "Local data directory (default: .local/maday).",
    "MADAY_DB_PATH": "SQLite database path (default: <data_dir>/maday.sqlite3).",
    "MADAY_LOG_DIR": "Directory for maday.log (default: <data_dir>).",
}
