"""
Saga orchestration for the order workflow.

Implements the Saga pattern: steps run in order and, when one fails, the
compensating actions of the steps that already completed run in reverse
order. The original error is then re-raised so the caller decides how to
record the outcome.

Example workflow: Reserve inventory -> Process payment
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

ForwardAction = Callable[[Dict[str, Any]], Awaitable[Any]]
CompensatingAction = Callable[[Dict[str, Any], Any], Awaitable[None]]


class SagaState(Enum):
    """Saga execution states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"


class StepStatus(Enum):
    """Step execution status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"


class SagaStep:
    """
    Represents a single step in a saga.

    Each step has:
    - Forward action (the main operation)
    - Compensating action (undo of a completed forward action)
    """

    def __init__(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ):
        """
        Initialize saga step.

        Args:
            name: Step name
            forward_action: Async function receiving the saga context
            compensating_action: Async function receiving the context and the
                forward action's result
        """
        self.name = name
        self.forward_action = forward_action
        self.compensating_action = compensating_action
        self.status = StepStatus.PENDING
        self.result: Optional[Any] = None
        self.error: Optional[str] = None

    async def execute(self, context: Dict[str, Any]) -> Any:
        """
        Execute the forward action.

        Raises:
            Exception: Whatever the forward action raised
        """
        logger.info("saga_step_executing", step=self.name)

        try:
            self.result = await self.forward_action(context)
            self.status = StepStatus.COMPLETED
            logger.info("saga_step_completed", step=self.name)
            return self.result
        except Exception as e:
            self.status = StepStatus.FAILED
            self.error = str(e)
            logger.warning("saga_step_failed", step=self.name, error=str(e))
            raise

    async def compensate(self, context: Dict[str, Any]) -> bool:
        """
        Execute the compensating action.

        Returns:
            bool: True if the step is compensated (or needs no compensation)
        """
        if self.compensating_action is None:
            logger.info("saga_step_no_compensation", step=self.name)
            return True

        if self.status != StepStatus.COMPLETED:
            logger.info("saga_step_skip_compensation", step=self.name, status=self.status.value)
            return True

        logger.info("saga_step_compensating", step=self.name)

        try:
            await self.compensating_action(context, self.result)
            self.status = StepStatus.COMPENSATED
            logger.info("saga_step_compensated", step=self.name)
            return True
        except Exception as e:
            # Left for manual intervention; never masks the original failure
            logger.error("saga_step_compensation_failed", step=self.name, error=str(e))
            return False


class Saga:
    """
    Represents a saga (a sequence of steps with compensating actions).
    """

    def __init__(self, name: str, saga_id: Optional[str] = None):
        """
        Initialize saga.

        Args:
            name: Saga name
            saga_id: Optional saga ID (generated if not provided)
        """
        self.saga_id = saga_id or str(uuid.uuid4())
        self.name = name
        self.steps: List[SagaStep] = []
        self.state = SagaState.PENDING
        self.context: Dict[str, Any] = {}
        self.failed_step: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None

    def add_step(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ) -> "Saga":
        """
        Add a step to the saga.

        Returns:
            Saga: Self for method chaining
        """
        self.steps.append(
            SagaStep(
                name=name,
                forward_action=forward_action,
                compensating_action=compensating_action,
            )
        )
        return self

    async def execute(self) -> Dict[str, Any]:
        """
        Execute the saga.

        Executes all steps in order, storing each result in the context under
        ``<step>_result``. If any step fails, compensates the completed steps
        in reverse order and re-raises the step's exception.

        Returns:
            Dict[str, Any]: Saga context with every step result
        """
        logger.info("saga_execution_started", saga_id=self.saga_id, name=self.name)

        self.state = SagaState.IN_PROGRESS
        completed_steps: List[SagaStep] = []

        for step in self.steps:
            try:
                result = await step.execute(self.context)
            except Exception as e:
                self.failed_step = step.name
                logger.warning(
                    "saga_execution_failed",
                    saga_id=self.saga_id,
                    name=self.name,
                    failed_step=step.name,
                    error=str(e),
                )
                self.state = SagaState.COMPENSATING
                await self._compensate(completed_steps)
                self.state = SagaState.COMPENSATED
                self.completed_at = datetime.now(timezone.utc)
                raise

            completed_steps.append(step)
            self.context[f"{step.name}_result"] = result

        self.state = SagaState.COMPLETED
        self.completed_at = datetime.now(timezone.utc)

        logger.info(
            "saga_completed_successfully",
            saga_id=self.saga_id,
            name=self.name,
            steps_completed=len(completed_steps),
        )
        return self.context

    async def _compensate(self, completed_steps: List[SagaStep]) -> None:
        """Execute compensating actions for completed steps, newest first."""
        if not completed_steps:
            return

        logger.info(
            "saga_compensation_started",
            saga_id=self.saga_id,
            steps_to_compensate=len(completed_steps),
        )

        failures = 0
        for step in reversed(completed_steps):
            if not await step.compensate(self.context):
                failures += 1

        logger.info("saga_compensation_completed", saga_id=self.saga_id, failures=failures)
