"""
erbridge: bridge between a browser dashboard and ER-series robot controllers.

Key components:
- Bridge: owns the controller transport, command correlator and WebSocket gateway
- RobotClient: typed robot operations over any command channel
- GatewayClient: WebSocket client for a running bridge
- MockController: simulated string-protocol controller
"""

from ._version import __version__
from .client.gateway_client import GatewayClient
from .client.robot_client import RobotClient
from .config import BridgeConfig
from .server.bridge import Bridge
from .server.transports.mock_controller import MockController

__all__ = [
    "__version__",
    "Bridge",
    "BridgeConfig",
    "GatewayClient",
    "RobotClient",
    "MockController",
]
