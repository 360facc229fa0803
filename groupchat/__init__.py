"""Group chat backend: realtime messaging core and its HTTP surface."""
