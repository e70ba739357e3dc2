"""Public entry point: pick backends and a strategy, then run one debate."""

import dataclasses
import logging

from config.config_loader import AppConfig
from sage_debate.cancellation import CancelToken
from sage_debate.debate import NotifyFn, RoundController, resolve_config
from sage_debate.models import DebateOptions, DebateResult, TaskType
from sage_debate.registry import ModelRegistry
from sage_debate.runner import RetryPolicy, TaskRunner
from sage_debate.strategies import DebateStrategy, build_strategies

logger = logging.getLogger(__name__)


class DebateOrchestrator:
    """Wires the registry, strategies and task runner into round controllers.

    The strategy map is built once and passed in explicitly; nothing here is
    global, so each orchestrator can be given stub strategies or registries.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        strategies: dict[TaskType, DebateStrategy],
        consensus_template: str,
        *,
        retry_policy: RetryPolicy | None = None,
        parallelism: int = 3,
        timeout_sec: float | None = None,
        round_token_estimate: int = 50_000,
    ) -> None:
        self.registry = registry
        self.strategies = strategies
        self.consensus_template = consensus_template
        self.retry_policy = retry_policy or RetryPolicy()
        self.parallelism = parallelism
        self.timeout_sec = timeout_sec
        self.round_token_estimate = round_token_estimate

    @classmethod
    def from_config(cls, config: AppConfig, registry: ModelRegistry | None = None) -> "DebateOrchestrator":
        return cls(
            registry or ModelRegistry.from_config(config),
            build_strategies(config.prompts),
            config.prompts.consensus,
            retry_policy=RetryPolicy.from_config(config.retry),
            parallelism=config.defaults.parallelism,
            timeout_sec=config.defaults.timeout_sec,
            round_token_estimate=config.defaults.round_token_estimate,
        )

    async def run_debate(
        self,
        options: DebateOptions,
        notify: NotifyFn | None = None,
        cancel: CancelToken | None = None,
    ) -> DebateResult:
        """Run a debate (or a single generation when debate is disabled).

        Raises:
            NoBackendsAvailable: If no configured model has its credential.
            AllGenerationsFailed: If no backend produced an initial candidate.
        """
        strategy = self.strategies[options.task_type]
        config = resolve_config(options.debate_config, strategy)

        participants = self.registry.list_available()
        if not config.enabled:
            logger.info("Debate disabled, using single model %s", participants[0].name)
            participants = participants[:1]
            config = dataclasses.replace(config, rounds=1)
        judge = self.registry.select_judge(participants)
        logger.info(
            "Debate participants: %s; judge: %s",
            ", ".join(p.name for p in participants),
            judge.name,
        )

        runner = TaskRunner(self.retry_policy, fallback=self.registry.fallback_for)
        controller = RoundController(
            strategy,
            config,
            participants,
            judge,
            runner,
            self.consensus_template,
            notify=notify,
            parallelism=self.parallelism,
            round_token_estimate=self.round_token_estimate,
            cancel=cancel,
            timeout_sec=self.timeout_sec,
            descriptors={d.name: d for d in self.registry.descriptors},
        )
        return await controller.run(options.user_prompt, options.code_context)
