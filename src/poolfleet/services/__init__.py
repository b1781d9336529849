"""Business logic services for the poolfleet operator."""
