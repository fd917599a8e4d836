"""Chat-platform side: outward client, rendering, inbound events, reconciliation."""
