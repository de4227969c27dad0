"""Rate limiting, IP fingerprinting and behavioural abuse throttling."""
