"""Workflow designer configuration constants: single source of truth for infrastructure env vars."""

import os
import shutil

# Server binding: used by entrypoint / uvicorn
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Claude CLI: resolved once at import time
CLAUDE_CLI_PATH = os.getenv("CLAUDE_CLI_PATH") or shutil.which("claude") or "claude"

# Claude CLI permission mode: skip interactive permission prompts for unattended runs
CLAUDE_SKIP_PERMISSIONS = os.getenv("CLAUDE_SKIP_PERMISSIONS", "true").lower() in ("true", "1", "yes")

# Working directory handed to the Claude CLI subprocess
CLAUDE_WORKDIR = os.getenv("CLAUDE_WORKDIR", ".")

# CORS: comma-separated list of allowed origins for the designer UI
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]

# Database: SQLite for development, PostgreSQL (asyncpg) in production
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./workflow_designer.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() in ("true", "1", "yes")

# Logging: one file per logger under LOG_DIR, plus console output
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
