"""Base class for all reconstruction stages.

Every stage declares typed Input, Output, Config via Pydantic models.
Inputs and outputs carry in-memory artifacts (surfaces, grids, meshes),
so they allow arbitrary types; configs stay plain and schema-exportable.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from .contracts import StepMeta

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)
ConfigT = TypeVar("ConfigT", bound=BaseModel)

logger = logging.getLogger(__name__)


class StepIO(BaseModel):
    """Base for stage inputs/outputs holding numpy arrays and live objects."""

    model_config = ConfigDict(arbitrary_types_allowed=True)


class BaseStep(ABC, Generic[InputT, OutputT, ConfigT]):
    """Abstract base for pipeline stages.

    Subclasses must:
    1. Define concrete models for InputT, OutputT (``StepIO``) and ConfigT
    2. Set class variables: name, input_type, output_type, config_type
    3. Implement run() and validate_inputs()

    Example:
        class ScalarGridStep(BaseStep[ScalarGridInput, ScalarGridOutput, ScalarGridConfig]):
            name = "scalar_grid"
            input_type = ScalarGridInput
            output_type = ScalarGridOutput
            config_type = ScalarGridConfig

            def run(self, inputs: ScalarGridInput) -> ScalarGridOutput: ...
            def validate_inputs(self, inputs: ScalarGridInput) -> bool: ...
    """

    name: ClassVar[str] = ""
    input_type: ClassVar[type[BaseModel]]
    output_type: ClassVar[type[BaseModel]]
    config_type: ClassVar[type[BaseModel]]

    def __init__(self, config: ConfigT, workers: int = -1):
        self.config = config
        self.workers = workers
        self.last_meta: StepMeta | None = None

    @abstractmethod
    def run(self, inputs: InputT) -> OutputT:
        """Execute this stage. Returns output model."""
        ...

    @abstractmethod
    def validate_inputs(self, inputs: InputT) -> bool:
        """Check that all required input artifacts are present and consistent."""
        ...

    def execute(self, inputs: InputT) -> OutputT:
        """Run with logging, timing, and validation."""
        step_name = self.name or self.__class__.__name__
        logger.info(f"[{step_name}] Validating inputs...")

        if not self.validate_inputs(inputs):
            raise ValueError(f"[{step_name}] Input validation failed")

        logger.info(f"[{step_name}] Starting...")
        t0 = time.perf_counter()
        result = self.run(inputs)
        elapsed = time.perf_counter() - t0
        self.last_meta = StepMeta(
            step_name=step_name,
            elapsed_seconds=elapsed,
            params=self.config.model_dump(),
        )
        logger.info(f"[{step_name}] Done in {elapsed:.2f}s")
        return result

    @classmethod
    def get_config_schema(cls) -> dict:
        """Return JSON schema for config."""
        return cls.config_type.model_json_schema()
