#!/usr/bin/env python3
"""
RPC Endpoint Check

Probes every configured endpoint once with eth_blockNumber and prints a
summary. Exits 1 when none of them answer.

Usage:
    python scripts/check_rpc_endpoints.py
    python scripts/check_rpc_endpoints.py --config my_sync.yaml --timeout 3
"""

import sys
import time
import argparse
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from torus_sync.errors import ConfigError
from torus_sync.rpc_pool import EndpointPool, endpoint_label
from torus_sync.settings import load_settings


def check_endpoints(pool: EndpointPool) -> dict:
    results = {}
    for ep in pool.endpoints:
        started = time.time()
        try:
            block = pool.probe(ep)
        except Exception as e:
            pool.report_failure(ep, e)
            results[ep.url] = (False, None, str(e)[:120])
            print(f"[RPC Pool] {ep.label}: FAILED - {str(e)[:120]}")
            continue
        pool.report_success(ep)
        elapsed = time.time() - started
        results[ep.url] = (True, block, f"{elapsed * 1000:.0f} ms")
        print(f"[RPC Pool] {ep.label}: block {block:,} in {elapsed * 1000:.0f} ms")
    return results


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, help="YAML settings file (default: packaged sync.yaml)")
    ap.add_argument("--timeout", type=float, help="probe timeout in seconds")
    args = ap.parse_args()

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    timeout = args.timeout or settings.rpc.probe_timeout_sec
    pool = EndpointPool(settings.rpc.endpoints, probe_timeout=timeout, request_timeout=timeout, probe_ttl=0)

    print("\n" + "=" * 60)
    print("Testing RPC Connections")
    print("=" * 60 + "\n")
    results = check_endpoints(pool)

    print("\n" + "=" * 60)
    print("Summary")
    print("=" * 60)
    heads = [block for ok, block, _ in results.values() if ok]
    for url, (ok, block, detail) in results.items():
        status = "✅" if ok else "❌"
        lag = f" (lag {max(heads) - block} blocks)" if ok and heads else ""
        print(f"{status} {endpoint_label(url)}  {detail}{lag}")

    working = len(heads)
    print(f"\nWorking: {working}/{len(results)} endpoints")
    return 0 if working else 1


if __name__ == "__main__":
    sys.exit(main())
