#!/usr/bin/env python3
"""
Backend startup wrapper for the StreakKeeper API.
"""
import os
import sys

import uvicorn


def main() -> int:
    port = int(os.getenv("PORT", "8000"))
    print(f"[Backend] Starting StreakKeeper on http://localhost:{port}")
    try:
        uvicorn.run(
            "streakkeeper.main:app",
            host=os.getenv("HOST", "0.0.0.0"),
            port=port,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[Backend] Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
