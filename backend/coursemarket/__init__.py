"""Commerce and entitlement engine for the course marketplace."""
