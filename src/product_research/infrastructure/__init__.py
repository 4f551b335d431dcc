"""Infrastructure layer for the product research engine.

Re-exports the public API surface for convenience::

    from product_research.infrastructure import (
        AsyncEventBus, EventStore, PhaseRegistry,
        ResearchConfig, load_config_file,
        InMemoryRunStore, InMemoryJobQueue, ResearchJob,
        ResearchTools, RetryingTools, CircuitBreaker,
    )
"""

from product_research.infrastructure.config import (
    BudgetConfig,
    CircuitBreakerConfig,
    ConfidenceConfig,
    DispositionConfig,
    OrchestratorConfig,
    PhasesConfig,
    RecoveryConfig,
    ResearchConfig,
    RetryConfig,
    load_config_file,
    load_config_from_json,
    load_config_from_yaml,
)
from product_research.infrastructure.event_bus import AsyncEventBus, EventStore
from product_research.infrastructure.job_queue import (
    InMemoryJobQueue,
    JobQueue,
    ResearchJob,
    resume_job_key,
    run_job_key,
)
from product_research.infrastructure.registry import PhaseRegistry
from product_research.infrastructure.run_store import InMemoryRunStore, RunStore
from product_research.infrastructure.serialization import (
    decode_checkpoint,
    deserialize,
    encode_checkpoint,
    from_json,
    serialize,
    to_json,
    to_yaml,
)
from product_research.infrastructure.tools import (
    CircuitBreaker,
    Comparable,
    CompQuery,
    LookupQuery,
    Observation,
    ResearchRecord,
    ResearchTools,
    RetryingTools,
    RetryPolicy,
    SubjectRecord,
)

__all__ = [
    # Config
    "BudgetConfig",
    "CircuitBreakerConfig",
    "ConfidenceConfig",
    "DispositionConfig",
    "OrchestratorConfig",
    "PhasesConfig",
    "RecoveryConfig",
    "ResearchConfig",
    "RetryConfig",
    "load_config_file",
    "load_config_from_json",
    "load_config_from_yaml",
    # Events
    "AsyncEventBus",
    "EventStore",
    # Storage / queue
    "InMemoryRunStore",
    "RunStore",
    "InMemoryJobQueue",
    "JobQueue",
    "ResearchJob",
    "resume_job_key",
    "run_job_key",
    # Phases
    "PhaseRegistry",
    # Serialization
    "serialize",
    "deserialize",
    "to_json",
    "from_json",
    "to_yaml",
    "encode_checkpoint",
    "decode_checkpoint",
    # Tools
    "ResearchTools",
    "RetryingTools",
    "RetryPolicy",
    "CircuitBreaker",
    "SubjectRecord",
    "LookupQuery",
    "Observation",
    "CompQuery",
    "Comparable",
    "ResearchRecord",
]
