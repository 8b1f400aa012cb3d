from .dsl import pipeline, rust_pipeline, stage
from .model import PipelineConfig, PipelineRun, RunDecision, RunStatus, TriggerEvent
from .runner import load_pipeline, run_pipeline

__all__ = [
    "pipeline",
    "rust_pipeline",
    "stage",
    "PipelineConfig",
    "PipelineRun",
    "RunDecision",
    "RunStatus",
    "TriggerEvent",
    "load_pipeline",
    "run_pipeline",
]
