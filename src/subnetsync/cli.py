"""
Command-line interface for subnetsync (operator tooling).

Usage (examples):
  - Show what this cluster owns on NSX:
      python -m subnetsync.cli inventory --base-url https://nsx.local --token T --cluster c1

  - Delete every subnet owned by this cluster (stop after 10 minutes):
      python -m subnetsync.cli cleanup --base-url https://nsx.local --token T --cluster c1 --timeout-sec 600
"""

from __future__ import annotations

import argparse
import sys
import threading
from typing import Any, Dict, Iterable, Optional

from .core.config import AppConfig, load_config
from .core.constants import CR_TYPE_SUBNET, CR_TYPE_SUBNETSET
from .core.errors import CleanupCancelledError, SubnetSyncError
from .core.inventory import SearchInventory
from .core.kube import KubeClient, KubernetesClient
from .core.logging_setup import build_logger
from .core.nsx_client import ClientOptions, NsxClient
from .core.realization import BackoffPolicy
from .core.service import ServiceOptions, SubnetService
from .core.store import INDEX_CR_TYPE, SubnetStore


def _summarize_counts(counts: Dict[str, int]) -> str:
    keys = [CR_TYPE_SUBNET, CR_TYPE_SUBNETSET, "total"]
    parts = [f"{k}={counts.get(k, 0)}" for k in keys]
    return " | ".join(parts)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="subnetsync", description="NSX VPC subnet reconciliation tooling")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default="", help="YAML config file (default: standard locations)")
    common.add_argument("--base-url", default="", help="NSX manager base URL")
    common.add_argument("--token", default="", help="NSX API token")
    common.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    common.add_argument("--timeout", type=float, default=None, help="HTTP timeout seconds")
    common.add_argument("--cluster", default="", help="Cluster name (nsx-op/cluster tag)")
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("inventory", parents=[common], help="Load owned subnets and print counts per CR type")

    c = sub.add_parser("cleanup", parents=[common], help="Delete every subnet owned by the cluster")
    c.add_argument("--timeout-sec", type=float, default=0, help="Cancel cleanup after N seconds (0 = no limit)")

    return p


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    nsx: Dict[str, Any] = {}
    if args.base_url:
        nsx["base_url"] = args.base_url
    if args.token:
        nsx["token"] = args.token
    if args.verify_tls is not None:
        nsx["verify_tls"] = args.verify_tls.lower() == "true"
    if args.timeout is not None:
        nsx["timeout_sec"] = args.timeout
    logging_cfg: Dict[str, Any] = {}
    if args.logs_dir is not None:
        logging_cfg["base_dir"] = args.logs_dir
    if args.console_level is not None:
        logging_cfg["console_level"] = args.console_level
    if args.file_level is not None:
        logging_cfg["file_level"] = args.file_level
    out: Dict[str, Any] = {"nsx": nsx, "logging": logging_cfg}
    if args.cluster:
        out["cluster"] = {"name": args.cluster}
    return out


def _load(args: argparse.Namespace) -> AppConfig:
    overrides = _overrides_from_args(args)
    if args.config:
        return load_config(overrides, files=(args.config,))
    return load_config(overrides)


def _client(cfg: AppConfig, logger: Any) -> NsxClient:
    return NsxClient(
        cfg.nsx.base_url,
        cfg.nsx.token,
        options=ClientOptions(verify=bool(cfg.nsx.verify_tls), timeout_sec=float(cfg.nsx.timeout_sec)),
        logger=logger,
    )


def _inventory_cmd(cfg: AppConfig, logger: Any) -> int:
    store = SubnetStore()
    inv = SearchInventory(_client(cfg, logger), cluster=cfg.cluster.name, page_size=cfg.inventory.page_size)
    total = inv.load(store)
    counts = {
        CR_TYPE_SUBNET: len(store.get_by_index(INDEX_CR_TYPE, CR_TYPE_SUBNET)),
        CR_TYPE_SUBNETSET: len(store.get_by_index(INDEX_CR_TYPE, CR_TYPE_SUBNETSET)),
        "total": total,
    }
    logger.info("Inventory summary: %s", _summarize_counts(counts))
    print(_summarize_counts(counts))
    return 0


def _kube_client(cfg: AppConfig) -> KubeClient:
    return KubernetesClient.from_config(in_cluster=cfg.kubernetes.in_cluster, kubeconfig=cfg.kubernetes.kubeconfig)


def _cleanup_cmd(cfg: AppConfig, logger: Any, timeout_sec: float, kube: Optional[KubeClient] = None) -> int:
    r = cfg.realization
    service = SubnetService.initialize(
        _client(cfg, logger),
        kube if kube is not None else _kube_client(cfg),
        ServiceOptions(
            cluster=cfg.cluster.name,
            org=cfg.nsx.org,
            use_hierarchical_api=cfg.subnet.use_hierarchical_api,
            compare_static_ip_allocation=cfg.subnet.compare_static_ip_allocation,
        ),
        policy=BackoffPolicy(steps=r.steps, duration_sec=r.duration_sec, factor=r.factor, jitter=r.jitter, cap_sec=r.cap_sec),
        max_attempts=cfg.identity.max_attempts,
        page_size=cfg.inventory.page_size,
        concurrency=cfg.app.concurrency,
        logger=logger,
    )
    cancel = threading.Event()
    timer = None
    if timeout_sec and timeout_sec > 0:
        timer = threading.Timer(timeout_sec, cancel.set)
        timer.daemon = True
        timer.start()
    try:
        deleted = service.cleanup(cancel)
    except CleanupCancelledError as e:
        logger.warning("Cleanup cancelled: deleted=%d remaining=%d", e.deleted, e.remaining)
        print(f"deleted={e.deleted} | remaining={e.remaining} | cancelled")
        return 2
    finally:
        if timer is not None:
            timer.cancel()
    logger.info("Cleanup summary: deleted=%d", deleted)
    print(f"deleted={deleted}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    cfg = _load(args)
    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"cluster": cfg.cluster.name},
    )
    logger.info("Starting subnetsync %s", args.cmd)

    try:
        if args.cmd == "inventory":
            return _inventory_cmd(cfg, logger)
        if args.cmd == "cleanup":
            return _cleanup_cmd(cfg, logger, args.timeout_sec)
    except SubnetSyncError as e:
        logger.error("%s failed: %s", args.cmd, e)
        print(f"error: {e}", file=sys.stderr)
        return 1

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
