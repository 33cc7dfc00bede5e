"""
Configuration settings for the skillpath learner-modeling service.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///skillpath.db",
        description="SQLAlchemy connection string for the graph and learner-state stores",
    )
    store_timeout_ms: int = Field(
        default=5000,
        ge=1,
        description="Upper bound for a single store call",
    )
    store_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for idempotent store operations before giving up",
    )
    store_backoff_base_ms: int = Field(
        default=100,
        ge=0,
        description="Base delay for exponential backoff between store retries",
    )
    optimistic_write_attempts: int = Field(
        default=5,
        ge=1,
        description="Read-modify-write attempts when a stale learner-state version is detected",
    )

    # ========================================
    # Bayesian Knowledge Tracing
    # ========================================
    bkt_p_init: float = Field(default=0.0, ge=0.0, le=1.0, description="Prior probability of mastery")
    bkt_p_learn: float = Field(default=0.1, ge=0.0, le=1.0, description="Probability of learning per attempt")
    bkt_p_slip: float = Field(default=0.1, ge=0.0, le=1.0, description="Probability of a slip when mastered")
    bkt_p_guess: float = Field(default=0.2, ge=0.0, le=1.0, description="Probability of a guess when not mastered")
    mastery_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Default pMastery at which a skill counts as mastered",
    )
    fit_min_samples: int = Field(
        default=30,
        ge=1,
        description="Minimum observation count before fitted BKT parameters are accepted",
    )
    fit_max_iterations: int = Field(default=100, ge=1, description="EM iteration cap")
    fit_tolerance: float = Field(default=1e-4, gt=0.0, description="EM log-likelihood convergence tolerance")

    # ─── Scaffolding ────────────────────────────────────────────────────────────
    scaffold_bands: list[float] = Field(
        default=[0.3, 0.5, 0.7],
        description="pMastery bands; crossing one upward removes a level of hint support",
    )
    scaffold_max_level: int = Field(default=3, ge=0, description="Most supportive scaffold level")

    # ========================================
    # Spaced Repetition (SM-2)
    # ========================================
    sm2_initial_easiness: float = Field(default=2.5, ge=1.3, description="Starting easiness factor")
    grade_high_prior: float = Field(
        default=0.8,
        description="Prior pMastery at or above which a miss is graded 0",
    )
    grade_mid_prior: float = Field(
        default=0.4,
        description="Prior pMastery at or above which a miss is graded 1 (otherwise 2)",
    )

    # ========================================
    # Path Planning
    # ========================================
    zpd_max_bloom_jump: int = Field(default=1, ge=0, description="Bloom levels allowed above the baseline")
    threshold_concept_fraction: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Fraction of path skills a bottleneck must disconnect to be a threshold concept",
    )

    # ========================================
    # Socratic Dialogue
    # ========================================
    dialogue_max_exchanges: int = Field(default=6, ge=1, description="Exchange budget per dialogue")

    # ─── Text Generator ─────────────────────────────────────────────────────────
    text_generator_enabled: bool = Field(
        default=False,
        description="Phrase questions and analyze responses with the text generator",
    )
    text_generator_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the text generation service",
    )
    text_generator_model: str = Field(default="llama3", description="Model name sent to the generator")
    text_generator_timeout_ms: int = Field(default=8000, ge=1, description="Generator request timeout")
    text_generator_retry_attempts: int = Field(default=2, ge=1, description="Generator attempts")

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated by loguru)",
    )

    def get_bkt_defaults(self) -> dict[str, float]:
        """Get global BKT parameter defaults."""
        return {
            "p_init": self.bkt_p_init,
            "p_learn": self.bkt_p_learn,
            "p_slip": self.bkt_p_slip,
            "p_guess": self.bkt_p_guess,
        }

    def get_fit_config(self) -> dict[str, float | int]:
        """Get parameter fitting configuration."""
        return {
            "min_samples": self.fit_min_samples,
            "max_iterations": self.fit_max_iterations,
            "tolerance": self.fit_tolerance,
        }

    def get_store_config(self) -> dict[str, int]:
        """Get store timeout and retry configuration."""
        return {
            "timeout_ms": self.store_timeout_ms,
            "retry_attempts": self.store_retry_attempts,
            "backoff_base_ms": self.store_backoff_base_ms,
            "optimistic_write_attempts": self.optimistic_write_attempts,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
