"""
QA Verification Pipeline
Red flag detection.

Submodules:
    - detector: RedFlagDetector (missing evidence, inconsistencies, tool
      execution, timing anomalies, unchanged coverage) and ``summarize``
    - reporter: markdown flag reports
"""
