"""Agency portal API."""
