"""HTTP and WebSocket API for Parley Stage."""
