"""pulsewatch — uptime monitoring engine."""
