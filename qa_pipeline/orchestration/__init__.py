"""
QA Verification Pipeline
Workflow orchestration.

Submodules:
    - orchestrator: TestWorkflowOrchestrator (stage state machine)
    - executors: test dispatch (HTTP runner or evidence replay)
    - stage_executor: per-stage ceilings and cancellation
    - worker_pool: bounded FIFO pool of workflows
    - escalation: handoff documents
    - reporter: workflow and epic reports
"""
