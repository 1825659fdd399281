#!/usr/bin/env python3
"""
Script to run a cluster node.
"""

import argparse
import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cluster.election import ELECTION_ROOT
from cluster.node import ClusterNode
from cluster.registry import REGISTRY_ROOT


def main():
    parser = argparse.ArgumentParser(description='Run a cluster node')
    parser.add_argument('--port', type=int, default=8080, help='Port to serve and advertise')
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind')
    parser.add_argument('--advertise-host', default=None, help='Host name to advertise (default: local FQDN)')
    parser.add_argument('--zk-hosts', default='127.0.0.1:2181', help='ZooKeeper connection string')
    parser.add_argument('--session-timeout', type=float, default=3.0, help='ZooKeeper session timeout (seconds)')
    parser.add_argument('--registry-root', default=REGISTRY_ROOT, help='Service registry znode')
    parser.add_argument('--election-root', default=ELECTION_ROOT, help='Leader election znode')
    parser.add_argument('--log-level', default='INFO', help='Logging level')

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )

    logging.getLogger(__name__).info(
        "Starting node on port %d, ZooKeeper at %s", args.port, args.zk_hosts
    )

    node = ClusterNode(
        port=args.port,
        zk_hosts=args.zk_hosts,
        session_timeout=args.session_timeout,
        advertise_host=args.advertise_host,
        registry_root=args.registry_root,
        election_root=args.election_root,
    )

    try:
        node.start(host=args.host)
    except KeyboardInterrupt:
        pass
    finally:
        node.shutdown()


if __name__ == '__main__':
    main()
