"""
QA Verification Pipeline
Model access.

Submodules:
    - model_selector: tier → model mapping, tier ordering, token costs
    - gateway: provider routing (anthropic / local stub), retry, cost tracking
"""
