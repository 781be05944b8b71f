"""StayWatch: provider extraction and price-insight engine."""
