"""
API Gateway Service package for the Campaign Access Gateway.

The gateway fronts the campaign management API, enforcing:
- Request throttling: fixed-window per-key limits on login, general API,
  write, aggregation and export traffic
- Authentication hand-off to the upstream auth service

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP clients for internal services.
- app.ratelimit: Throttle, stores, policies, sweeper and route guard.
"""
