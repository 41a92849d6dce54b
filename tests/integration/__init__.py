"""Integration tests that open real ZeroMQ sockets on the loopback interface."""
