"""
Lab Reasoning Engine.

Turns a patient's laboratory biomarkers and clinical context into a ranked,
explainable differential diagnosis through a four-layer LLM pipeline, with
two independently queried models reconciled into one consensus ranking.

Entry point: lab_reasoning.agent.orchestrator.AnalysisPipeline
"""
