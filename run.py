#!/usr/bin/env python3
"""
Banking Service Entry Point

Starts the FastAPI server using settings from BANKING_* environment variables.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from banking_app.api import run_server
from banking_app.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Banking Service...")
    print(f"💾 Storage: {config.storage_backend} ({config.database_path})")
    print("💰 All balances use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}{config.api_prefix}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down Banking Service...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
