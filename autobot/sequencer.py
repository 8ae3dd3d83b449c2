"""
AUTOBOT Gate Sequencer

Runs a repository's enabled gates in order. Once a gate with
fail_on_error fails, every later gate in the run is recorded as skipped,
including gates that would not block on their own.
"""

from __future__ import annotations

from loguru import logger

from autobot.config_loader import ConfigResolver
from autobot.gate_executor import GateExecutor
from autobot.state import GateResult


class GateNotFoundError(Exception):
    pass


class GateSequencer:
    def __init__(self, resolver: ConfigResolver, executor: GateExecutor):
        self.resolver = resolver
        self.executor = executor

    def run_all(self, run_id: str, repo_path: str) -> list[GateResult]:
        gates = self.resolver.resolve(repo_path).enabled_gates
        logger.info(f"[SEQUENCER] Run {run_id}: {len(gates)} enabled gates")

        results: list[GateResult] = []
        should_stop = False

        for gate in gates:
            if should_stop:
                results.append(self.executor.skip(run_id, gate))
                continue

            result = self.executor.execute(run_id, gate, repo_path)
            results.append(result)

            if result.status == "failed" and gate.fail_on_error:
                logger.warning(f"[SEQUENCER] {gate.name} is blocking; skipping remaining gates")
                should_stop = True

        return results

    def run_gate(self, run_id: str, repo_path: str, gate_name: str) -> GateResult:
        """Run a single configured gate by name, enabled or not."""
        config = self.resolver.resolve(repo_path)
        for gate in config.qa_gates:
            if gate.name == gate_name:
                return self.executor.execute(run_id, gate, repo_path)
        known = [g.name for g in config.qa_gates]
        raise GateNotFoundError(f"Unknown gate: {gate_name}. Known: {known}")
