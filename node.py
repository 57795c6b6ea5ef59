import argparse
import logging
from concurrent import futures

import grpc

from federation_core import NetworkConfig, QueryStore
from federation_core.service import QueryNodeService, add_query_node_to_server

logger = logging.getLogger("node")


def serve(config_path: str, node_id: str, max_workers: int = 16, bind_host: str = "0.0.0.0"):
    config = NetworkConfig(config_path)
    node = config.get(node_id)

    store = QueryStore(node.id)
    service = QueryNodeService(node, store)

    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    add_query_node_to_server(service, server)
    server.add_insecure_port(f"{bind_host}:{node.port}")

    server.start()
    logger.info(
        "[Node] %s (%s%s) listening on %s:%s",
        node.id, node.name, ", home" if node.is_home else "", node.host, node.port,
    )
    server.wait_for_termination()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start a saved-query respondent node.")
    parser.add_argument("config", help="Path to JSON network configuration.")
    parser.add_argument("node_id", help="Node identifier from the configuration (e.g., home, east).")
    parser.add_argument("--max-workers", type=int, default=16, help="gRPC server worker threads.")
    parser.add_argument("--bind-host", default="0.0.0.0", help="Interface to listen on.")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    serve(args.config, args.node_id, args.max_workers, args.bind_host)
