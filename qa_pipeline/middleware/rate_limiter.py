"""
Per-blueprint rate limits.

Limits (per remote IP):
    - Workflow endpoints: 30/minute  (runs can trigger model calls)
    - Evidence endpoints: 120/minute (producer ingestion, detection, verification)
    - Health check:       exempt

Rate limiting is disabled in testing mode.
"""


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("workflow")
    if bp:
        limiter.limit("30/minute")(bp)

    bp = app.blueprints.get("evidence")
    if bp:
        limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — workflow: 30/min, evidence: 120/min")
