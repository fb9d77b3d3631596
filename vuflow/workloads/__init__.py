"""Ready-made workload steps."""
