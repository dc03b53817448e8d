"""
QA Verification Pipeline
Independent verification.

Submodules:
    - artifacts: ArtifactStore (path resolution, bounded reads, PNG sniffing)
    - evidence_analyzer: per-artifact parsing
    - integrity: IntegrityChecker
    - cross_validator: CrossValidator
    - skeptical: SkepticalAnalyzer
    - confidence: score and recommendation
    - verifier: IndependentVerifier
    - reporter: summary, reasoning and markdown rendering
"""
