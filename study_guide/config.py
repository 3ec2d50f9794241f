from dataclasses import dataclass, field
from typing import Dict, Optional
import os

from dotenv import load_dotenv

from study_guide.models.llm_client import ENV_PATH, LLMConfig, check_model

PIPELINE_VERSION = "study-guide-pipeline/3"

MODES = ("maximal", "canonical")


@dataclass
class PipelineConfig:
    extract_model: str = "gpt-4o"
    synthesis_model: str = "gpt-4o"

    # Chunking
    max_slides_per_chunk: int = 6
    max_chars_per_chunk: int = 12000
    adaptive_token_limit: Optional[int] = 2500
    max_split_depth: int = 3

    # Wall-clock budget in seconds; None disables it
    time_budget_s: Optional[float] = 240.0
    max_workers: int = 1

    # Max output tokens per stage
    max_tokens: Dict[str, int] = field(default_factory=lambda: {
        "extract": 6000,
        "derive": 4000,
        "plan": 1500,
        "outline": 2500,
        "pack": 5000,
        "rewrite": 5000,
        "review": 1500,
    })

    pipeline_version: str = PIPELINE_VERSION
    store_root: str = "data/store"

    # Raise before any LLM call if a model id is not allow-listed
    def validate(self) -> "PipelineConfig":
        check_model(self.extract_model)
        check_model(self.synthesis_model)
        if self.max_slides_per_chunk < 1:
            raise ValueError("max_slides_per_chunk must be >= 1")
        if self.max_chars_per_chunk < 1:
            raise ValueError("max_chars_per_chunk must be >= 1")
        if self.max_split_depth < 0:
            raise ValueError("max_split_depth must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        return self

    def llm_config(self, stage: str) -> LLMConfig:
        model = self.extract_model if stage in ("extract", "derive") else self.synthesis_model
        return LLMConfig(model=model, max_completion_tokens=self.max_tokens.get(stage, 2000))

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        load_dotenv(ENV_PATH)
        cfg = cls()

        cfg.extract_model = os.getenv("STUDY_GUIDE_EXTRACT_MODEL", cfg.extract_model)
        cfg.synthesis_model = os.getenv("STUDY_GUIDE_SYNTHESIS_MODEL", cfg.synthesis_model)
        cfg.max_slides_per_chunk = int(os.getenv("STUDY_GUIDE_MAX_SLIDES", cfg.max_slides_per_chunk))
        cfg.max_chars_per_chunk = int(os.getenv("STUDY_GUIDE_MAX_CHARS", cfg.max_chars_per_chunk))
        cfg.max_split_depth = int(os.getenv("STUDY_GUIDE_MAX_SPLIT_DEPTH", cfg.max_split_depth))
        cfg.max_workers = int(os.getenv("STUDY_GUIDE_MAX_WORKERS", cfg.max_workers))
        cfg.store_root = os.getenv("STUDY_GUIDE_STORE_ROOT", cfg.store_root)

        budget = os.getenv("STUDY_GUIDE_TIME_BUDGET_S")
        if budget is not None:
            cfg.time_budget_s = float(budget) if budget.strip() else None

        return cfg.validate()
