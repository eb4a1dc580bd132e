"""CLI entry point for social-dispatch.

Usage:
    social-dispatch run-due
    social-dispatch publish POST_ID [--platforms twitter,linkedin]
    social-dispatch tokens --org ORG
    social-dispatch refresh --org ORG --platform PLATFORM --account ACCOUNT
    social-dispatch log [--failures]
    social-dispatch status
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from social_dispatch.config import DispatchConfig, load_config
from social_dispatch.errors import ConfigurationError
from social_dispatch.factory import build_dispatcher, build_scheduler, build_stores
from social_dispatch.models import Platform, PublishResult


def _print_result(r: PublishResult) -> None:
    if r.skipped:
        status = "SKIPPED"
    else:
        status = "OK" if r.success else "FAILED"
    detail = r.url or r.response_id or r.error or "N/A"
    print(f"  [{status}] {r.platform.value}: {detail}")
    if r.degraded:
        print(f"      degraded: {', '.join(r.notes)}")
    if len(r.destinations) > 1:
        for d in r.destinations:
            print(f"      {d.name or d.destination_id}: {'skipped' if d.skipped else 'ok' if d.success else d.error}")


def cmd_run_due(cfg: DispatchConfig) -> None:
    batch = build_scheduler(cfg).run_due()
    print(
        f"Processed {batch.total} post(s): {batch.published} published, "
        f"{batch.partial} partial, {batch.failed} failed, {len(batch.held)} held"
    )
    for report in batch.reports:
        print(f"Post {report.post_id} -> {report.new_state.value}")
        for r in report.results:
            _print_result(r)
    for post_id, error in batch.errors:
        print(f"  ! {post_id}: {error}")


def cmd_publish(cfg: DispatchConfig, post_id: str, platforms: list[str] | None) -> None:
    response = build_scheduler(cfg).publish_now(post_id, platforms)
    print(f"Post {post_id} -> {response.state}")
    for r in response.results:
        _print_result(r)
    if not response.success:
        sys.exit(1)


def cmd_tokens(cfg: DispatchConfig, org_id: str) -> None:
    stores = build_stores(cfg)
    statuses = build_dispatcher(cfg, stores).tokens.token_statuses(org_id)
    print(f"Connections for {org_id}: {len(statuses)}")
    for s in statuses:
        flags = [name for name, on in (
            ("expired", s.is_expired), ("refresh due", s.needs_refresh), ("needs reauth", s.needs_reauth),
        ) if on]
        expires = s.expires_at.isoformat() if s.expires_at else "never"
        print(f"  {s.platform.value} / {s.account_name or s.account_id}: expires {expires}"
              f"{' [' + ', '.join(flags) + ']' if flags else ''}")


def cmd_refresh(cfg: DispatchConfig, org_id: str, platform: str, account_id: str) -> None:
    stores = build_stores(cfg)
    manager = build_dispatcher(cfg, stores).tokens
    outcome = manager.refresh(org_id, Platform.parse(platform), account_id)
    if outcome.success:
        print(f"Refreshed {platform} token for {account_id}" + (f" ({outcome.note})" if outcome.note else ""))
    else:
        print(f"Refresh failed: {outcome.error}", file=sys.stderr)
        sys.exit(1)


def cmd_log(cfg: DispatchConfig, failures_only: bool) -> None:
    log = build_stores(cfg).delivery_log
    records = log.get_failures() if failures_only else log.all_records
    print(f"{'Failures' if failures_only else 'All records'}: {len(records)}")
    for r in records:
        print(f"  [{r.status}] {r.platform} / {r.post_id} ({r.attempts} attempt(s)): {r.external_url or r.error}")


def cmd_status(cfg: DispatchConfig) -> None:
    print(f"Live mode: {cfg.live_mode}")
    print(f"Data dir:  {cfg.data_dir}")
    print(f"Workers:   {cfg.max_workers}, deadline {cfg.dispatch_deadline:.0f}s")
    for name, client in (("LinkedIn", cfg.linkedin), ("Reddit", cfg.reddit), ("Google", cfg.google)):
        print(f"{name + ' OAuth:':<16}{'configured' if client.configured else 'not configured'}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="social-dispatch", description="Social dispatch CLI")
    parser.add_argument("--config", type=Path, default=None, help="Config YAML file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run-due", help="Dispatch every scheduled post that is due")

    publish_p = sub.add_parser("publish", help="Publish one post now")
    publish_p.add_argument("post_id")
    publish_p.add_argument("--platforms", default=None, help="Comma-separated platform list")

    tokens_p = sub.add_parser("tokens", help="Show token status for an org")
    tokens_p.add_argument("--org", required=True)

    refresh_p = sub.add_parser("refresh", help="Force a token refresh")
    refresh_p.add_argument("--org", required=True)
    refresh_p.add_argument("--platform", required=True)
    refresh_p.add_argument("--account", required=True)

    log_p = sub.add_parser("log", help="View delivery log")
    log_p.add_argument("--failures", action="store_true")

    sub.add_parser("status", help="Show configuration status")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_config(args.config)
        if args.command == "run-due":
            cmd_run_due(cfg)
        elif args.command == "publish":
            platforms = [p.strip() for p in args.platforms.split(",") if p.strip()] if args.platforms else None
            cmd_publish(cfg, args.post_id, platforms)
        elif args.command == "tokens":
            cmd_tokens(cfg, args.org)
        elif args.command == "refresh":
            cmd_refresh(cfg, args.org, args.platform, args.account)
        elif args.command == "log":
            cmd_log(cfg, args.failures)
        elif args.command == "status":
            cmd_status(cfg)
    except (ConfigurationError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
