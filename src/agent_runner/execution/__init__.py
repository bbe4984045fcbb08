"""Step executor contract, timeout gateway, and HTTP worker adapter."""

from agent_runner.execution.gateway import ExecutorGateway, StepExecutor
from agent_runner.execution.http import HttpStepExecutor

__all__ = ["ExecutorGateway", "HttpStepExecutor", "StepExecutor"]
