"""
AUTOBOT Gate Executor

Runs exactly one gate. The execution record is written as `running`
before the command starts so the audit trail survives even a crash
mid-command, then moved to `passed`/`failed` once.

A gate's own failure is data, not an exception. Only store failures
escape from here.
"""

from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from autobot.config_loader import GateConfig
from autobot.runner import CommandError, CommandResult, run_command
from autobot.sandbox import PathTranslator
from autobot.state import SKIPPED_OUTPUT, GateExecutionRecord, GateResult
from autobot.store import TaskStore

CommandRunnerFn = Callable[[str, str, int], CommandResult]


def parse_errors(output: str) -> list[str]:
    """Split raw gate output into its non-blank lines."""
    return [line for line in output.splitlines() if line.strip()]


class GateExecutor:
    def __init__(
        self,
        store: TaskStore,
        translator: PathTranslator | None = None,
        runner: CommandRunnerFn = run_command,
    ):
        self.store = store
        self.translator = translator or PathTranslator()
        self.runner = runner

    def execute(self, run_id: str, gate: GateConfig, repo_path: str) -> GateResult:
        start = time.monotonic()
        exec_path = self.translator.translate(repo_path)

        execution = self.store.create_execution(GateExecutionRecord(
            run_id=run_id,
            gate_name=gate.name,
            command=gate.command,
            order=gate.order or 0,
        ))

        logger.info(f"[GATE] {gate.name}: {gate.command}")

        try:
            result = self.runner(gate.command, exec_path, gate.timeout_ms)
        except CommandError as e:
            duration = _elapsed_ms(start)
            error_text = e.stderr or e.message
            errors = parse_errors(e.stderr or e.stdout or e.message or "")
            self.store.complete_execution(
                execution.id,
                status="failed",
                output=e.stdout or None,
                error=error_text,
                errors=errors,
                exit_code=e.exit_code or 1,
                duration=duration,
            )
            logger.warning(f"[GATE] {gate.name} failed in {duration}ms ({e.message})")
            return GateResult(
                gate_name=gate.name,
                status="failed",
                output=e.stdout or "",
                errors=errors,
                duration=duration,
                execution_id=execution.id,
            )

        duration = _elapsed_ms(start)
        self.store.complete_execution(
            execution.id,
            status="passed",
            output=result.stdout,
            error=result.stderr or None,
            exit_code=0,
            duration=duration,
        )
        logger.info(f"[GATE] {gate.name} passed in {duration}ms")
        return GateResult(
            gate_name=gate.name,
            status="passed",
            output=result.stdout or "No output",
            duration=duration,
            execution_id=execution.id,
        )

    def skip(self, run_id: str, gate: GateConfig) -> GateResult:
        """Record a gate as skipped without running its command."""
        execution = self.store.create_execution(GateExecutionRecord(
            run_id=run_id,
            gate_name=gate.name,
            command=gate.command,
            order=gate.order or 0,
        ))
        self.store.complete_execution(
            execution.id,
            status="skipped",
            output=SKIPPED_OUTPUT,
            duration=0,
        )
        logger.info(f"[GATE] {gate.name} skipped")
        return GateResult(
            gate_name=gate.name,
            status="skipped",
            output=SKIPPED_OUTPUT,
            duration=0,
            execution_id=execution.id,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
