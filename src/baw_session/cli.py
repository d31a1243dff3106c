from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from .config import AppConfig, load_config
from .errors import InvalidSecretError
from .logging_config import configure_logging
from .models import AcquisitionResult, Credentials, DownstreamRequest
from .portal import totp
from .portal.api import expand_since
from .portal.browser import BrowserHandle
from .portal.client import SessionAcquirer
from .util.debug_bundle import create_debug_bundle, save_failure_artifacts


logger = logging.getLogger("baw_session")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="baw_session")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    acquire = sub.add_parser("acquire", help="Log into the portal (email/password + TOTP) and print the session cookies")
    acquire.add_argument("--config", default="config.yaml", help="Optional YAML config override (default: config.yaml)")
    acquire.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    acquire.add_argument("--slowmo-ms", type=int, default=None, help="Playwright slow motion in milliseconds (debug).")
    acquire.add_argument(
        "--fetch",
        action="append",
        default=[],
        metavar="URL",
        help=(
            "After login, GET this URL from inside the page (uses the session cookies). Repeatable. "
            "'{since}' is replaced with the ISO time BAW_SINCE_MINUTES ago."
        ),
    )
    acquire.add_argument("--out", default="", help="Also write the result JSON to this file.")
    acquire.add_argument(
        "--debug-bundle",
        action="store_true",
        help="On failure, zip the debug directory + log file under data/ for sharing.",
    )

    code = sub.add_parser("totp", help="Print the current TOTP code for the configured secret (debug)")
    code.add_argument("--config", default="config.yaml", help="Optional YAML config override (default: config.yaml)")
    code.add_argument("--secret", default="", help="Base32 secret (default: BAW_TOTP)")

    return p


def _load(path: str) -> AppConfig:
    try:
        return load_config(path)
    except ValidationError as e:
        raise SystemExit(f"Invalid configuration: {e}")


def _result_json(result: AcquisitionResult, *, screenshot_paths: List[str]) -> str:
    data = result.model_dump(mode="json", exclude={"screenshot"})
    data["screenshot_paths"] = screenshot_paths
    return json.dumps(data, indent=2, ensure_ascii=False)


async def _acquire(cfg: AppConfig, downstream: List[DownstreamRequest]) -> AcquisitionResult:
    acquirer = SessionAcquirer(portal=cfg.portal, timeouts=cfg.timeouts)
    creds = Credentials(
        email=cfg.credentials.email,
        password=cfg.credentials.password,
        totp=cfg.credentials.totp,
    )
    async with BrowserHandle(cfg.browser) as browser:
        return await acquirer.acquire(browser, creds, downstream=downstream)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    if args.cmd == "totp":
        secret = args.secret or _load(args.config).credentials.totp
        if not secret:
            raise SystemExit("No TOTP secret: pass --secret or set BAW_TOTP.")
        if totp.is_precomputed_code(secret):
            raise SystemExit("BAW_TOTP holds a precomputed code, not a secret.")
        try:
            print(totp.generate(secret))
        except InvalidSecretError as e:
            raise SystemExit(str(e))
        return 0

    if args.cmd == "acquire":
        cfg = _load(args.config)
        configure_logging(
            level=cfg.logging.level,
            file_path=cfg.logging.file_path,
            secrets=(cfg.credentials.password, cfg.credentials.totp),
        )

        updates: dict = {}
        if args.headful:
            updates["headless"] = False
        if args.slowmo_ms is not None:
            updates["slow_mo_ms"] = args.slowmo_ms
        if updates:
            cfg = cfg.model_copy(update={"browser": cfg.browser.model_copy(update=updates)})

        downstream = [
            DownstreamRequest(url=expand_since(u, since_minutes=cfg.portal.since_minutes)) for u in args.fetch
        ]

        logger.info("Starting session acquisition (portal=%s)", cfg.portal.base_url)
        result = asyncio.run(_acquire(cfg, downstream))

        screenshot_paths: List[str] = []
        if not result.success:
            written = save_failure_artifacts(result, debug_dir=cfg.debug.dir)
            screenshot_paths = [str(p) for p in written if p.suffix == ".png"]
            if args.debug_bundle:
                bundle = create_debug_bundle(debug_dir=cfg.debug.dir, log_file=cfg.logging.file_path)
                logger.info("Debug bundle written to %s", bundle)

        out = _result_json(result, screenshot_paths=screenshot_paths)
        if args.out:
            Path(args.out).parent.mkdir(parents=True, exist_ok=True)
            Path(args.out).write_text(out, encoding="utf-8")
        print(out)
        return 0 if result.success else 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
