import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional


@dataclass(frozen=True)
class NodeSpec:
    """Immutable description of a respondent node in the network."""

    id: str
    name: str
    host: str
    port: int
    enabled: bool = True
    is_home: bool = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class FederationSettings:
    """Tuning knobs shared by every node client and the fan-out."""

    fanout_workers: int = 8
    rpc_timeout_seconds: float = 5.0
    max_retries: int = 2
    circuit_failure_threshold: int = 5
    circuit_recovery_seconds: float = 10.0

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "FederationSettings":
        """Create settings from a dictionary, using defaults if None or missing keys."""
        if not data:
            return cls()
        defaults = cls()
        return cls(
            fanout_workers=max(1, int(data.get("fanout_workers", defaults.fanout_workers))),
            rpc_timeout_seconds=float(data.get("rpc_timeout_seconds", defaults.rpc_timeout_seconds)),
            max_retries=max(0, int(data.get("max_retries", defaults.max_retries))),
            circuit_failure_threshold=int(
                data.get("circuit_failure_threshold", defaults.circuit_failure_threshold)
            ),
            circuit_recovery_seconds=float(
                data.get("circuit_recovery_seconds", defaults.circuit_recovery_seconds)
            ),
        )


def _parse_node(key: str, spec: Dict) -> NodeSpec:
    try:
        return NodeSpec(
            id=str(spec.get("id", key)),
            name=str(spec.get("name", key)),
            host=spec["host"],
            port=int(spec["port"]),
            enabled=bool(spec.get("enabled", True)),
            is_home=bool(spec.get("is_home", False)),
        )
    except KeyError as exc:
        missing = exc.args[0]
        raise ValueError(f"Node '{key}' missing required field '{missing}'.") from exc


class NetworkConfig:
    """Config facade that hides JSON parsing and lookup semantics."""

    def __init__(self, config_path: str):
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with path.open("r", encoding="utf-8") as stream:
            payload = json.load(stream)

        nodes = payload.get("nodes", {})
        if not nodes:
            raise ValueError("Configuration must include at least one node definition.")

        self._nodes: Dict[str, NodeSpec] = {}
        for key, spec in nodes.items():
            node = _parse_node(key, spec)
            self._nodes[node.id] = node

        self._settings = FederationSettings.from_dict(payload.get("settings"))

    def get(self, node_id: str) -> NodeSpec:
        if node_id not in self._nodes:
            raise KeyError(f"Node '{node_id}' is not defined in the configuration.")
        return self._nodes[node_id]

    def all_nodes(self) -> List[NodeSpec]:
        return list(self._nodes.values())

    def get_settings(self) -> FederationSettings:
        return self._settings
