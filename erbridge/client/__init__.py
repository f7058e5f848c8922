"""Clients: the typed robot facade and the gateway WebSocket client."""

from erbridge.client.gateway_client import GatewayClient
from erbridge.client.robot_client import CommandChannel, RobotClient

__all__ = ["CommandChannel", "GatewayClient", "RobotClient"]
