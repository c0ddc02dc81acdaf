"""Cloud directory access: instance metadata, autoscaling, tags and parameters."""
