"""
Command-line front end for the launch orchestrator.

Library modules only log; this is the one place that prints (JSON to stdout,
errors to stderr).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from blueprints import calculate_expansion_size, expand_blueprint, load_blueprint
from bulk_launch import BulkLaunchRequest, launch_bulk_campaign
from graph_client import MetaAPIError, MetaClient, MetaConfig
from launch_runner import BlueprintValidationError, LaunchError, run_launch, validate_blueprint
from launch_store import build_launch_store
from media_upload import UploadProgress, VideoReadiness
from providers import PlatformNotImplementedError, create_adapter

logger = logging.getLogger(__name__)


def _read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _dump(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _print_progress(event: UploadProgress) -> None:
    if event.phase == "transferring":
        print(f"[upload] {event.label}: {event.percent}%", file=sys.stderr)
    else:
        print(f"[upload] {event.label}: {event.phase}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="launch_tool.py",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """
            Campaign launch orchestrator (Meta Graph API)

            Examples:
              # 1) Validate token
              python launch_tool.py whoami

              # 2) Check a blueprint and see how many entities it expands to
              python launch_tool.py validate --blueprint blueprint.json

              # 3) Launch a blueprint without touching Meta
              python launch_tool.py --dry-run launch --blueprint blueprint.json

              # 4) Bulk launch a wizard tree for a stored user / ad account
              python launch_tool.py bulk-launch --plan launch.json --user-id u1 --ad-account-id acc1

              # 5) Check whether an uploaded video is ready
              python launch_tool.py video-status --video-id <VIDEO_ID>
            """
        ),
    )

    p.add_argument("--env", default=".env", help="Path to .env file (default: .env).")
    p.add_argument("--dry-run", action="store_true", help="Simulate platform calls (launch only).")
    p.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level.")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("whoami", help="GET /me?fields=id,name (validates token).")

    sp = sub.add_parser("validate", help="Validate a blueprint JSON and print its expansion size.")
    sp.add_argument("--blueprint", required=True)

    sp = sub.add_parser("launch", help="Launch a blueprint JSON through its platform adapter.")
    sp.add_argument("--blueprint", required=True)
    sp.add_argument("--platform", help="Override the blueprint platform.")

    sp = sub.add_parser("bulk-launch", help="Create campaign / ad sets / ads from a launch JSON.")
    sp.add_argument("--plan", required=True)
    sp.add_argument("--user-id", required=True)
    sp.add_argument("--ad-account-id", required=True, help="Internal ad account id in the launch store.")
    sp.add_argument("--store", help="SQLite store path (default: LAUNCH_STORE_PATH or .launch_store.db).")

    sp = sub.add_parser("video-status", help="Read processing status for a video id.")
    sp.add_argument("--video-id", required=True)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    env_path = Path(args.env)
    if env_path.exists():
        load_dotenv(env_path, override=False)

    try:
        if args.cmd == "validate":
            blueprint = load_blueprint(_read_json(args.blueprint))
            validate_blueprint(blueprint)
            params = expand_blueprint(blueprint.config)
            _dump({"valid": True, "expansion": calculate_expansion_size(params)})
            return 0

        if args.cmd == "launch" and args.dry_run:
            data = _read_json(args.blueprint)
            if args.platform:
                data["platform"] = args.platform
            blueprint = load_blueprint(data)
            result = run_launch(blueprint, create_adapter(blueprint.platform, dry_run=True), dry_run=True)
            _dump(result.as_dict())
            return 0 if result.success else 1

        if args.cmd == "bulk-launch":
            request = BulkLaunchRequest.model_validate(_read_json(args.plan))
            result = launch_bulk_campaign(
                args.user_id,
                args.ad_account_id,
                request,
                store=build_launch_store(args.store),
                on_progress=_print_progress,
            )
            _dump(result.as_dict())
            return 0 if result.success else 1
    except (BlueprintValidationError, ValidationError, PlatformNotImplementedError) as e:
        print(f"[INVALID] {e}", file=sys.stderr)
        return 2
    except MetaAPIError as e:
        print("\n[MetaAPIError]", e, file=sys.stderr)
        if e.error:
            print(json.dumps(e.error, indent=2), file=sys.stderr)
        return 1
    except LaunchError as e:
        print(f"\n[LAUNCH ERROR] {e}", file=sys.stderr)
        return 1

    try:
        cfg = MetaConfig.from_env()
    except ValueError as e:
        print(f"[CONFIG ERROR] {e}", file=sys.stderr)
        print("Tip: set META_ACCESS_TOKEN (and META_AD_ACCOUNT_ID / META_PAGE_ID) in .env.", file=sys.stderr)
        return 2

    client = MetaClient(cfg)

    try:
        if args.cmd == "whoami":
            _dump(client.whoami())
            return 0

        if args.cmd == "launch":
            data = _read_json(args.blueprint)
            if args.platform:
                data["platform"] = args.platform
            blueprint = load_blueprint(data)
            result = run_launch(blueprint, create_adapter(blueprint.platform, client=client))
            _dump(result.as_dict())
            return 0 if result.success else 1

        if args.cmd == "video-status":
            status = client.get_video_status(args.video_id)
            verdict = VideoReadiness.from_status(status).verdict()
            _dump({"video_id": args.video_id, "ready": verdict, "status": status})
            return 0

        print(f"Unknown command: {args.cmd}", file=sys.stderr)
        return 2

    except (BlueprintValidationError, ValidationError, PlatformNotImplementedError) as e:
        print(f"[INVALID] {e}", file=sys.stderr)
        return 2
    except MetaAPIError as e:
        print("\n[MetaAPIError]", e, file=sys.stderr)
        if e.error:
            print(json.dumps(e.error, indent=2), file=sys.stderr)
        return 1
    except LaunchError as e:
        print(f"\n[LAUNCH ERROR] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
