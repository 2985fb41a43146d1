# powertracker/cli.py
import argparse

from powertracker.config import DEFAULT_CONFIG_PATH, OUTPUT_MODES


def build_parser():
    parser = argparse.ArgumentParser(
        prog="powertracker",
        description=(
            "Queries Home Assistant for a summary of your power usage over a period of time. "
            "The WebSocket API exposes the hourly statistics behind the Energy dashboard; "
            "this tool fetches them day by day and prints a table of hours by days."
        ),
    )

    parser.add_argument(
        "-c",
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration file",
    )

    parser.add_argument(
        "-d",
        "--days",
        type=int,
        default=None,
        help="Number of days to compute power stats for (default: 30)",
    )

    parser.add_argument(
        "-o",
        "--output",
        choices=OUTPUT_MODES,
        default=None,
        help="Output format (default: table)",
    )

    parser.add_argument(
        "-f",
        "--csv-file",
        default=None,
        help="Path of the CSV file to write to (default: results.csv)",
    )

    parser.add_argument(
        "-i",
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging",
    )

    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress log output",
    )

    return parser
