"""Bridge server: transports, correlation, event log and WebSocket gateway."""
