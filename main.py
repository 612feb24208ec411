#!/usr/bin/env python3
"""
App admission controller - validating and mutating webhooks for App CRs.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Admission webhooks for Giant Swarm App CRs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve on 8443 with TLS, blacklisting references to system namespaces
  python main.py --tls-cert-file /certs/tls.crt --tls-key-file /certs/tls.key \\
      --provider aws --blacklist-namespace giantswarm --blacklist-namespace kube-

Every flag can also be set from the environment (see admission/config.py); flags win.
        """,
    )

    # Server
    parser.add_argument("--address", help="Webhook server bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Webhook server listen port (default: 8443)")
    parser.add_argument("--metrics-port", type=int, help="Separate Prometheus listener port (default: main port only)")
    parser.add_argument("--tls-cert-file", help="Path to the TLS certificate")
    parser.add_argument("--tls-key-file", help="Path to the TLS private key")
    parser.add_argument("--log-level", help="Log level (default: info)")
    parser.add_argument("--provider", help="Installation provider (aws, azure, kvm, capa, ...)")

    # Security policy
    parser.add_argument("--whitelist-group", action="append", help="Group allowed to bypass the policy (repeatable)")
    parser.add_argument(
        "--whitelist-user", action="append", help="Username prefix allowed to bypass the policy (repeatable)"
    )
    parser.add_argument("--blacklist-app", action="append", help="App name not allowed (repeatable)")
    parser.add_argument(
        "--blacklist-catalog", action="append", help="Catalog blacklisted apps may not come from (repeatable)"
    )
    parser.add_argument(
        "--blacklist-namespace",
        action="append",
        help="Namespace apps may not reference; a leading or trailing '-' makes it a wildcard (repeatable)",
    )

    # Compliance baseline
    parser.add_argument(
        "--compliance-variant", choices=["pss", "psp-removal"], help="Compliance baseline profile (default: pss)"
    )
    parser.add_argument("--vintage-provider", action="append", help="Provider gated on the release version (repeatable)")
    parser.add_argument(
        "--capi-provider", action="append", help="psp-removal: provider gated on the Cluster psp label (repeatable)"
    )
    parser.add_argument(
        "--cutoff-version", help="First release that requires the baseline (default: v19.2.0 pss, v19.3.0 psp-removal)"
    )
    parser.add_argument("--baseline-artifact-name", help="Name of the baseline ConfigMap (default: per variant)")
    parser.add_argument("--config-patches-file", help="psp-removal: YAML list of per-app artifacts")
    return parser


def main():
    """CLI entry point."""
    from admission.api.webhook import run
    from admission.config import load_config

    args = build_parser().parse_args()

    cfg = load_config().with_overrides(
        address=args.address,
        port=args.port,
        metrics_port=args.metrics_port,
        tls_cert_file=args.tls_cert_file,
        tls_key_file=args.tls_key_file,
        log_level=args.log_level.lower() if args.log_level else None,
        provider=args.provider.lower() if args.provider else None,
        group_whitelist=args.whitelist_group,
        user_whitelist=args.whitelist_user,
        app_blacklist=args.blacklist_app,
        catalog_blacklist=args.blacklist_catalog,
        namespace_blacklist=args.blacklist_namespace,
        compliance_variant=args.compliance_variant,
        vintage_providers=[p.lower() for p in args.vintage_provider] if args.vintage_provider else None,
        capi_providers=[p.lower() for p in args.capi_provider] if args.capi_provider else None,
        cutoff_version=args.cutoff_version,
        baseline_artifact_name=args.baseline_artifact_name,
        config_patches_file=args.config_patches_file,
    )

    try:
        run(cfg)
    except Exception as e:
        print(f"Error running admission controller: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
