#!/usr/bin/env python3
# CLI entry point for the prompt packager
# `worker` polls the functions API; `package` runs the pipeline on one payload file

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from prompt_packager.client import GatewayConfig, make_chat_fn
from prompt_packager.pipeline import package_prompt
from prompt_packager.state import JOB_TYPE_PACKAGE_PROMPT, InvalidPayloadError, UnknownJobTypeError, parse_payload
from prompt_packager.worker import DEFAULT_POLL_INTERVAL, FunctionsClient, run_worker


async def run_package(payload_file: Path, job_type: str = JOB_TYPE_PACKAGE_PROMPT) -> dict:
    """Package a single payload JSON file against the AI gateway.

    Args:
        payload_file: Path to a JSON object shaped like jobs.payload_json
        job_type: Job type used to resolve the payload model

    Returns:
        The packaged result as a report dict
    """
    payload_json = json.loads(payload_file.read_text(encoding="utf-8"))
    payload = parse_payload(job_type, payload_json)
    result = await package_prompt(payload, make_chat_fn(GatewayConfig.from_env()))
    return result.to_report()


async def run_polling_worker(functions_url: str, worker_key: str, interval: float) -> None:
    async with FunctionsClient(functions_url, worker_key) as client:
        await run_worker(client, interval=interval)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="prompt-packager",
        description="Standardize and classify submitted build prompts",
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="Poll jobs-claim and report results")
    worker.add_argument("--functions-url", default=os.environ.get("FUNCTIONS_URL", ""),
                        help="Base URL of the functions API (…/functions/v1)")
    worker.add_argument("--worker-key", default=os.environ.get("WORKER_KEY", ""))
    worker.add_argument("--interval", type=float,
                        default=float(os.environ.get("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL)),
                        help="Seconds to wait when the queue is empty")

    package = sub.add_parser("package", help="Package one payload JSON file and print the result")
    package.add_argument("payload_file", type=Path)
    package.add_argument("--type", dest="job_type", default=JOB_TYPE_PACKAGE_PROMPT)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "worker":
        if not args.worker_key or not args.functions_url:
            print("Missing WORKER_KEY or FUNCTIONS_URL", file=sys.stderr)
            return 1
        try:
            asyncio.run(run_polling_worker(args.functions_url, args.worker_key, args.interval))
        except KeyboardInterrupt:
            pass
        return 0

    if not args.payload_file.exists():
        print(f"Error: payload file not found: {args.payload_file}", file=sys.stderr)
        return 1
    try:
        report = asyncio.run(run_package(args.payload_file, args.job_type))
    except (UnknownJobTypeError, InvalidPayloadError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
