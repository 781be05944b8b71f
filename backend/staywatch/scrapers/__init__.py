"""Browser sessions, extraction strategies and the per-provider circuit breaker."""
