#!/usr/bin/env python3
"""
API entrypoint - serves the study content repository over HTTP.
"""

import sys
from pathlib import Path

# Load environment variables from .env file first
import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from studyrepo.core.config import API_HOST, API_PORT, get_content_dir, validate_store_config


def main():
    """Validate configuration and start the server."""
    issues = validate_store_config()
    for issue in issues:
        print(f"WARNING: {issue}")

    print(f"Serving content from {get_content_dir()} on {API_HOST}:{API_PORT}")
    uvicorn.run("studyrepo.api.main:app", host=API_HOST, port=API_PORT)
    return 0


if __name__ == "__main__":
    sys.exit(main())
