"""HTTP clients for the appliance API."""
