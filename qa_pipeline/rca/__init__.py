"""
QA Verification Pipeline
Root-cause analysis and automated fixing.

Submodules:
    - classifier: failure category and complexity
    - analyzer: RootCauseAnalyzer
    - tier_policy: attempt number × complexity → model tier
    - strategies: fix strategy templates per category
    - learning_store: FixLearning lookup, atomic upsert, similarity search
    - fix_applier: pluggable application of a proposed fix
    - fix_engine: RCAFixEngine
    - reporter: RCA markdown
"""
