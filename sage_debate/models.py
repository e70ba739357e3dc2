"""Pure dataclasses for the debate pipeline. No logic beyond validation, no deps."""

from dataclasses import dataclass, field
from enum import Enum


class TaskType(str, Enum):
    OPINION = "opinion"
    REVIEW = "review"
    PLAN = "plan"


class Phase(str, Enum):
    GENERATE = "generate"
    CRITIQUE = "critique"
    SYNTHESIZE = "synthesize"
    CONSENSUS = "consensus"
    JUDGE = "judge"
    VALIDATE = "validate"


class WarningCode(str, Enum):
    GEN_FAIL = "GEN_FAIL"
    JUDGE_MALFORMED = "JUDGE_MALFORMED"
    VALIDATION_FAIL = "VALIDATION_FAIL"
    TOKEN_BUDGET = "TOKEN_BUDGET"


class LogLevel(str, Enum):
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"


@dataclass(frozen=True)
class ModelDescriptor:
    name: str
    provider_family: str   # "openai", "anthropic", "gemini"
    token_limit: int
    cost_per_input_token: float
    cost_per_output_token: float
    available: bool


@dataclass(frozen=True)
class DebateConfig:
    """Caller-facing debate settings.

    ``rounds`` and ``log_level`` stay ``None`` until merged with the strategy
    defaults; ``max_total_tokens`` of 0 means unlimited.
    """

    enabled: bool = False
    rounds: int | None = None
    max_total_tokens: int = 0
    log_level: LogLevel | None = None

    def __post_init__(self) -> None:
        if self.rounds is not None and self.rounds < 1:
            raise ValueError(f"rounds must be >= 1, got {self.rounds}")
        if self.max_total_tokens < 0:
            raise ValueError(f"max_total_tokens must be >= 0, got {self.max_total_tokens}")


@dataclass(frozen=True)
class Critique:
    worker_id: str         # author of the critique
    text: str


@dataclass
class DebateContext:
    user_prompt: str
    code_context: str = ""
    candidates: list[str] = field(default_factory=list)
    worker_ids: list[str] = field(default_factory=list)  # parallel to candidates
    critiques: list[Critique] = field(default_factory=list)
    round: int = 0


@dataclass(frozen=True)
class CandidateRecord:
    index: int
    worker_id: str
    backend_name: str


@dataclass(frozen=True)
class DebateWarning:
    code: WarningCode
    message: str
    phase: Phase


@dataclass(frozen=True)
class TranscriptEntry:
    round: int
    phase: Phase
    worker_id: str
    prompt: str
    response: str


@dataclass(frozen=True)
class Notification:
    level: str             # "info", "debug", "warning", "error"
    message: str


@dataclass
class TokenUsage:
    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion


@dataclass(frozen=True)
class Timings:
    total_ms: float
    per_phase_ms: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Winner:
    worker_id: str
    backend_name: str


@dataclass(frozen=True)
class ConsensusInfo:
    reached: bool = False
    round: int = 0
    score: float = 0.0


@dataclass(frozen=True)
class Fallback:
    phase: Phase
    reason: str


@dataclass(frozen=True)
class DebateOptions:
    task_type: TaskType
    user_prompt: str
    code_context: str = ""
    debate_config: DebateConfig = field(default_factory=DebateConfig)


@dataclass(frozen=True)
class DebateResult:
    task_type: TaskType
    final_text: str
    warnings: list[DebateWarning]
    token_usage: TokenUsage
    timings: Timings
    rounds_completed: int
    winner: Winner | None = None
    consensus: ConsensusInfo = field(default_factory=ConsensusInfo)
    estimated_cost: float = 0.0
    transcript: list[TranscriptEntry] | None = None
    fallbacks: list[Fallback] | None = None
    aborted: bool = False
    abort_reason: str | None = None


@dataclass
class ModelResponse:
    provider: str          # registry name, e.g. "o3", "gemini"
    model: str             # actual model string used
    content: str
    latency_sec: float
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
