"""usagegate: session-gated, rate-limited usage accounting."""
