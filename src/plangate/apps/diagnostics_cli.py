from __future__ import annotations

from plangate.cli import base_parser
from plangate.core.config.loader import load_gateway_config
from plangate.core.orchestrator.planner import build_planner
from plangate.core.providers.health import check_configured_providers
from plangate.core.telemetry.logging import configure_logging


def main() -> int:
    parser = base_parser("plangate-diag", "plangate diagnostics CLI")
    parser.add_argument("--validate-config", action="store_true")
    parser.add_argument("--check-providers", action="store_true")
    parser.add_argument("--skip-provider-tests", action="store_true")
    parser.add_argument("--provider-health", action="store_true")
    parser.add_argument("--cache-stats", action="store_true")
    parser.add_argument("--plan", default=None, metavar="TEXT", help="Request a plan for TEXT")
    parser.add_argument("--provider", default=None, help="Provider for --plan (defaults to providers.selected)")
    args = parser.parse_args()

    needs_cfg = any(
        [
            args.validate_config,
            args.check_providers,
            args.provider_health,
            args.cache_stats,
            args.plan is not None,
        ]
    )
    if not needs_cfg:
        print("diag-ready (use --validate-config/--check-providers/--provider-health/--cache-stats/--plan TEXT)")
        return 0

    try:
        cfg = load_gateway_config(defaults_path=args.defaults, instance_path=args.config)
    except Exception as exc:  # noqa: BLE001
        print(f"config-invalid error={exc}")
        return 1
    configure_logging(cfg.telemetry.log_level, cfg.telemetry.json_logs, force=True)

    if args.validate_config:
        print(
            f"config-valid instance={cfg.instance.name} env={cfg.environment} "
            f"selected={cfg.providers.selected} default={cfg.providers.default} "
            f"enabled={cfg.providers.enabled_ids()}"
        )

    planner = build_planner(cfg)
    rc = 0
    try:
        if args.check_providers:
            results = planner.worker.submit(
                check_configured_providers(cfg, planner.registry, skip_tests=args.skip_provider_tests)
            ).result()
            print("provider-checks:")
            for item in results.values():
                print(
                    f"- {item.provider}: enabled={item.enabled} ok={item.ok} "
                    f"latency_ms={item.latency_ms} error={item.error}"
                )

        if args.plan is not None:
            result = planner.plan(args.plan, args.provider)
            if result is None:
                print("plan-result: none")
                rc = 2
            else:
                resp = result.response
                print(
                    f"plan-result: provider={resp.provider_id} model={resp.model} "
                    f"tokens={resp.tokens_used} latency_ms={resp.latency_ms} from_cache={resp.from_cache}"
                )
                print(result.plan)

        if args.provider_health:
            print("provider-health:")
            details = planner.provider_status()
            for name, d in details.items():
                breaker = d["breaker"]
                print(
                    f"- {name}: health={d['health']} default={d['default']} model={d['model']} "
                    f"breaker={breaker['state']} failures={breaker['failure_count']}"
                )

        if args.cache_stats:
            stats = planner.cache_stats()
            print("cache-stats:")
            for key in ("enabled", "size", "hits", "misses", "evictions", "expirations", "hit_rate"):
                print(f"- {key}={stats[key]}")
    finally:
        planner.close()
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
