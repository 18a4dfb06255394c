#!/usr/bin/env python3
"""
Check that the configured analytics endpoint is reachable from this host.
"""

import argparse
import json
import logging
import os
import sys
from urllib.parse import urlsplit

# Add the project root directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from perfmon.modules.analytics_transport import ConnectivityMonitor
from perfmon.utils.config import Config, ConfigurationError
from perfmon.utils.sanitization import redact_url

# Set up basic logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def main():
    """
    Probe the analytics host over TCP and print the result as JSON.
    """
    parser = argparse.ArgumentParser(description="Check analytics endpoint reachability.")
    parser.add_argument("--env-file", default=".env", help="Configuration file to load")
    parser.add_argument("--timeout", type=float, default=3.0, help="Connect timeout in seconds")
    args = parser.parse_args()

    try:
        config = Config(args.env_file)
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        sys.exit(1)

    analytics = config.analytics
    parts = urlsplit(analytics.endpoint)
    host = analytics.connectivity_host or parts.hostname
    if not host:
        logging.error("No analytics host configured. Set ANALYTICS_ENDPOINT or ANALYTICS_CONNECTIVITY_HOST.")
        sys.exit(1)
    port = analytics.connectivity_port if analytics.connectivity_host else (
        parts.port or (443 if parts.scheme == "https" else 80)
    )

    monitor = ConnectivityMonitor(host, port, timeout=args.timeout)
    reachable = monitor.check()

    print(json.dumps({
        "endpoint": redact_url(analytics.endpoint),
        "host": host,
        "port": port,
        "reachable": reachable,
    }, indent=2))

    if not reachable:
        sys.exit(1)


if __name__ == "__main__":
    main()
