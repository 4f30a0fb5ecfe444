"""
Core data models for Arbiter.

Defines the model registry, conversation messages, completion results,
routing decisions, fan-out entries, and peer-review ranking records.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AdapterKind(str, Enum):
    """Wire protocols the gateway knows how to speak."""

    ANTHROPIC = "anthropic"
    GROQ = "groq"
    CEREBRAS = "cerebras"
    OPENROUTER = "openrouter"
    TOGETHER = "together"
    DEEPSEEK = "deepseek"
    MINIMAX = "minimax"


@dataclass(frozen=True)
class ModelSpec:
    """Static description of one dispatchable logical model."""

    model_id: str
    adapter_kind: AdapterKind
    native_name: str
    display_name: str
    input_cost_per_million: float = 0.0
    output_cost_per_million: float = 0.0


# Logical model id -> backend, native name and pricing (USD per 1M tokens)
MODEL_REGISTRY: dict[str, ModelSpec] = {
    "anthropic/claude-sonnet-4.5": ModelSpec(
        model_id="anthropic/claude-sonnet-4.5",
        adapter_kind=AdapterKind.ANTHROPIC,
        native_name="claude-sonnet-4-5-20250929",
        display_name="Claude Sonnet 4.5",
        input_cost_per_million=3.00,
        output_cost_per_million=15.00,
    ),
    "meta-llama/llama-3.3-70b-instruct:cerebras": ModelSpec(
        model_id="meta-llama/llama-3.3-70b-instruct:cerebras",
        adapter_kind=AdapterKind.CEREBRAS,
        native_name="llama-3.3-70b",
        display_name="Cerebras: Llama 3.3 70B",
        input_cost_per_million=0.60,
        output_cost_per_million=0.60,
    ),
    "meta-llama/llama-4-maverick:groq": ModelSpec(
        model_id="meta-llama/llama-4-maverick:groq",
        adapter_kind=AdapterKind.GROQ,
        native_name="meta-llama/llama-4-maverick-17b-128e-instruct",
        display_name="Groq: Llama 4 Maverick",
        input_cost_per_million=0.11,
        output_cost_per_million=0.34,
    ),
    "deepseek/deepseek-chat": ModelSpec(
        model_id="deepseek/deepseek-chat",
        adapter_kind=AdapterKind.DEEPSEEK,
        native_name="deepseek-chat",
        display_name="DeepSeek-V3",
        input_cost_per_million=0.14,
        output_cost_per_million=0.56,
    ),
    "minimax/minimax-m2": ModelSpec(
        model_id="minimax/minimax-m2",
        adapter_kind=AdapterKind.MINIMAX,
        native_name="MiniMax-M2",
        display_name="MiniMax M2",
        input_cost_per_million=0.30,
        output_cost_per_million=1.20,
    ),
    "moonshotai/kimi-k2": ModelSpec(
        model_id="moonshotai/kimi-k2",
        adapter_kind=AdapterKind.OPENROUTER,
        native_name="moonshotai/kimi-k2",
        display_name="Kimi K2 (Moonshot)",
        input_cost_per_million=0.14,
        output_cost_per_million=2.49,
    ),
    "qwen/qwen-2.5-72b-instruct": ModelSpec(
        model_id="qwen/qwen-2.5-72b-instruct",
        adapter_kind=AdapterKind.TOGETHER,
        native_name="Qwen/Qwen2.5-72B-Instruct-Turbo",
        display_name="Qwen 2.5 72B (Alibaba)",
        input_cost_per_million=0.27,
        output_cost_per_million=0.27,
    ),
    "z-ai/glm-4-32b": ModelSpec(
        model_id="z-ai/glm-4-32b",
        adapter_kind=AdapterKind.TOGETHER,
        native_name="zai-org/GLM-4.6",
        display_name="GLM-4-32B (Zhipu)",
        input_cost_per_million=0.10,
        output_cost_per_million=0.10,
    ),
    # Together reasoning and small models (dispatchable, not on the roster)
    "together/qwen-2.5-7b-instruct-turbo": ModelSpec(
        model_id="together/qwen-2.5-7b-instruct-turbo",
        adapter_kind=AdapterKind.TOGETHER,
        native_name="Qwen/Qwen2.5-7B-Instruct-Turbo",
        display_name="Qwen 2.5 7B Turbo",
        input_cost_per_million=0.30,
        output_cost_per_million=0.30,
    ),
    "together/deepseek-r1-distill-llama-70b": ModelSpec(
        model_id="together/deepseek-r1-distill-llama-70b",
        adapter_kind=AdapterKind.TOGETHER,
        native_name="deepseek-ai/DeepSeek-R1-Distill-Llama-70B",
        display_name="DeepSeek R1 Distill 70B",
        input_cost_per_million=2.00,
        output_cost_per_million=2.00,
    ),
    "together/deepseek-r1": ModelSpec(
        model_id="together/deepseek-r1",
        adapter_kind=AdapterKind.TOGETHER,
        native_name="deepseek-ai/DeepSeek-R1",
        display_name="DeepSeek R1",
        input_cost_per_million=3.00,
        output_cost_per_million=7.00,
    ),
    "together/qwq-32b": ModelSpec(
        model_id="together/qwq-32b",
        adapter_kind=AdapterKind.TOGETHER,
        native_name="Qwen/QwQ-32B",
        display_name="QwQ 32B",
        input_cost_per_million=1.20,
        output_cost_per_million=1.20,
    ),
}


def display_name_for(model_id: str) -> str:
    """Human-readable name for a logical id, falling back to the id itself."""
    spec = MODEL_REGISTRY.get(model_id)
    return spec.display_name if spec else model_id


class MessageRole(str, Enum):
    """Message roles in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A message in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=MessageRole.SYSTEM, content=content)


class CompletionResult(BaseModel):
    """
    Outcome of one adapter invocation.

    Token counts are exact when the backend reported usage and
    ``ceil(len / 4)`` estimates otherwise; ``estimated_usage`` says which.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    ttft_ms: int = 0
    total_ms: int = 0
    tokens_per_second: float = 0.0
    estimated_usage: bool = True


class BackendDescriptor(BaseModel):
    """A roster entry used by the fan-out modes."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    adapter_kind: AdapterKind

    @classmethod
    def from_spec(cls, spec: ModelSpec) -> "BackendDescriptor":
        return cls(id=spec.model_id, display_name=spec.display_name, adapter_kind=spec.adapter_kind)


# Fixed roster for all-models chat and peer review, in presentation order
DEFAULT_ROSTER: tuple[BackendDescriptor, ...] = tuple(
    BackendDescriptor.from_spec(MODEL_REGISTRY[model_id])
    for model_id in (
        "anthropic/claude-sonnet-4.5",
        "meta-llama/llama-3.3-70b-instruct:cerebras",
        "meta-llama/llama-4-maverick:groq",
        "deepseek/deepseek-chat",
        "minimax/minimax-m2",
        "moonshotai/kimi-k2",
        "qwen/qwen-2.5-72b-instruct",
        "z-ai/glm-4-32b",
    )
)


class Route(str, Enum):
    """Fixed routes the query classifier can select."""

    ULTRA_FAST = "ultra-fast"
    FAST = "fast"
    PREMIUM = "premium"
    CODE = "code"


class RoutingDecision(BaseModel):
    """Classifier output for one query."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    model_name: str
    route: Route
    route_label: str
    score: int
    signals: list[str] = Field(default_factory=list)


class CostStats(BaseModel):
    """Cost of one completion compared against the baseline model."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int
    output_tokens: int
    ttft_ms: int = 0
    total_ms: int = 0
    tokens_per_second: float = 0.0
    cost: float
    baseline_cost: float
    saved: float
    saved_percent: float


class FanOutEntry(BaseModel):
    """One roster slot of a fan-out batch."""

    model_config = ConfigDict(frozen=True)

    backend_id: str
    model_name: str
    result: CompletionResult | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def success(self) -> bool:
        return self.result is not None


class ChatMode(str, Enum):
    """Chat dispatch modes."""

    SINGLE = "single"
    AUTO = "auto"
    ALL = "all"


class ChatReply(BaseModel):
    """One model's reply within a chat turn."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    model_name: str
    content: str
    error: str | None = None
    cost_stats: CostStats | None = None


class ChatResponse(BaseModel):
    """Result of a chat turn in any mode."""

    model_config = ConfigDict(frozen=True)

    mode: ChatMode
    replies: list[ChatReply]
    was_trimmed: bool = False
    routing: RoutingDecision | None = None


# Peer review

class CompetitionMode(str, Enum):
    """How the ranking engine sources its comparison set."""

    SINGLE = "single"
    ALL = "all"


class Candidate(BaseModel):
    """One answer entering a peer-review round."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    model_name: str
    content: str
    is_original: bool = False
    cost_stats: CostStats | None = None


class AnonymizedEntry(BaseModel):
    """A candidate presented to judges under a letter label."""

    model_config = ConfigDict(frozen=True)

    label: str
    content: str
    original_index: int


class Judgment(BaseModel):
    """One judge's ranking of the anonymized set, one rank per label in label order."""

    model_config = ConfigDict(frozen=True)

    judge_id: str
    model_name: str
    rankings: list[int]
    reasoning: str = ""
    failed: bool = False
    error: str | None = None


class RankedEntry(BaseModel):
    """A candidate after de-anonymization and aggregation."""

    model_config = ConfigDict(frozen=True)

    place: int
    original_index: int
    model_id: str
    model_name: str
    average_rank: float
    is_original: bool = False
    content: str
    cost_stats: CostStats | None = None


class RankingReport(BaseModel):
    """Full output of a peer-review round."""

    model_config = ConfigDict(frozen=True)

    mode: CompetitionMode
    results: list[RankedEntry]
    original_placement: int | None = None
    original_model: str | None = None
    better_responses: list[RankedEntry] = Field(default_factory=list)
    chairman_synthesis: str | None = None
    judgments: list[Judgment] = Field(default_factory=list)
