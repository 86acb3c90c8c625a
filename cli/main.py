import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor

from core.config import settings
from core.models import ScanReport
from core.target import TargetResolutionError, build_config, resolve_host, resolve_target
from pipeline.orchestrator import Orchestrator
from probers import rtt


def _print(obj):
    print(json.dumps(obj, indent=2, default=str))


def _fail(msg: str, code: int = 2) -> int:
    print(msg, file=sys.stderr)
    return code


def _print_text(report: ScanReport, show_all: bool):
    target = report.target
    results = report.results if show_all else report.open_results
    if not results:
        print(f"No open ports found on {target.host} ({target.ip}) in range {target.start_port}-{target.end_port}")
    else:
        label = "Ports" if show_all else "Open ports"
        print(f"{label} on {target.host} ({target.ip}):")
        for r in results:
            if r.banner:
                print(f"{r.port} - {r.status.value} (banner: {r.banner_text[:80]})")
            else:
                print(f"{r.port} - {r.status.value}")
    suffix = " (cancelled)" if report.cancelled else ""
    print(
        f"\nScanned {target.port_count} ports in {report.elapsed_s:.2f} seconds "
        f"({report.rate:.1f} ports/sec). Open: {report.open_count}{suffix}"
    )


def cmd_scan(args) -> int:
    try:
        target = resolve_target(args.host, args.start, args.end)
        config = build_config(args.workers, args.timeout, args.retries, args.adaptive)
    except TargetResolutionError as exc:
        return _fail(str(exc), code=1)
    except ValueError as exc:
        return _fail(str(exc))

    orch = Orchestrator(target, config)
    with ThreadPoolExecutor(max_workers=1) as ex:
        future = ex.submit(orch.run)
        try:
            report = future.result()
        except KeyboardInterrupt:
            orch.cancel()
            report = future.result()

    if args.json:
        results = report.results if args.all else report.open_results
        _print([r.to_doc() for r in results])
    else:
        _print_text(report, args.all)
    return 0


def cmd_estimate(args) -> int:
    if args.timeout <= 0:
        return _fail("--timeout must be > 0")
    try:
        ip = resolve_host(args.host)
    except TargetResolutionError as exc:
        return _fail(str(exc), code=1)
    timeout = rtt.estimate_timeout(ip, args.timeout / 1000.0)
    _print({"host": args.host, "ip": ip, "timeout_ms": round(timeout * 1000, 1)})
    return 0


def cmd_verify(args) -> int:
    _print(settings.model_dump())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Concurrent single-host TCP connect scanner")
    sub = parser.add_subparsers()

    p_scan = sub.add_parser("scan", help="Scan a port range on one host")
    p_scan.add_argument("host", help="target host (ip or domain)")
    p_scan.add_argument("--start", type=int, default=1, help="start port")
    p_scan.add_argument("--end", type=int, default=1024, help="end port")
    p_scan.add_argument("--workers", type=int, default=settings.scan_concurrency, help="max concurrent dial attempts")
    p_scan.add_argument("--timeout", type=int, default=settings.scan_timeout_ms, help="base/max connect timeout in ms")
    p_scan.add_argument("--retries", type=int, default=settings.scan_retries, help="extra attempts after a timeout")
    p_scan.add_argument(
        "--adaptive",
        action=argparse.BooleanOptionalAction,
        default=settings.scan_adaptive,
        help="derive the timeout from measured RTT",
    )
    p_scan.add_argument("--json", action="store_true", default=False, help="output results as JSON")
    p_scan.add_argument("--all", action="store_true", default=False, help="include closed ports")
    p_scan.set_defaults(func=cmd_scan)

    p_est = sub.add_parser("estimate", help="Estimate the adaptive timeout for a host")
    p_est.add_argument("host")
    p_est.add_argument("--timeout", type=int, default=settings.scan_timeout_ms, help="upper bound in ms")
    p_est.set_defaults(func=cmd_estimate)

    p_verify = sub.add_parser("verify", help="Print effective settings")
    p_verify.set_defaults(func=cmd_verify)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "func"):
        return args.func(args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
