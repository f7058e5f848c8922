"""
Transport modules for the controller link.

This package provides the string-protocol and register-polling transports,
a factory choosing between them, and a mock controller for simulation.
"""

from .base import ControllerTransport, ReconnectBackoff
from .mock_controller import MockController
from .register_transport import RegisterPollingTransport
from .string_transport import StringProtocolTransport
from .transport_factory import create_transport, resolve_protocol

__all__ = [
    "ControllerTransport",
    "ReconnectBackoff",
    "StringProtocolTransport",
    "RegisterPollingTransport",
    "MockController",
    "create_transport",
    "resolve_protocol",
]
