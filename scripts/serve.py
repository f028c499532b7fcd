#!/usr/bin/env python3
"""Run the ingestion API.

    python scripts/serve.py
    UTILITY_STORAGE_BACKEND=memory python scripts/serve.py --port 8080
"""
import argparse

import uvicorn
from dotenv import load_dotenv
load_dotenv()

from utility_ingestion.api.app import create_app
from utility_ingestion.config import Settings


def main():
    settings = Settings()
    parser = argparse.ArgumentParser(description="Run the utility ingestion API")
    parser.add_argument("--host", default=settings.api_host)
    parser.add_argument("--port", type=int, default=settings.api_port)
    args = parser.parse_args()

    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
