"""Global pytest configuration."""

import os

# Keep tests away from any developer database before imports
os.environ.setdefault("LOCAL_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
