"""
Command-line entry point.

    file-analyst ask "What is the average Salary by Position?" --file ./employees.csv
    file-analyst evaluate

Failures are not caught: they surface as a traceback and a non-zero exit.
"""
from __future__ import annotations

import argparse
import asyncio
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from analyst_core.config import Settings, settings as default_settings
from analyst_core.logging import setup_logging
from analyst_core.runtime import RunContext

from .agent import AgentResult, FileAnalystAgent
from .core.model_factory import create_backend
from .infrastructure.clients import BenchmarkClient
from .tools import build_default_registry


def prepare_data_dir(data_dir: Path, input_file: Optional[str] = None) -> List[str]:
    """
    Copy the optional input file into `data_dir` and list every file there.

    Raises:
        FileNotFoundError: If `input_file` does not exist
    """
    data_dir.mkdir(parents=True, exist_ok=True)
    if input_file:
        source = Path(input_file)
        if not source.is_file():
            raise FileNotFoundError(f"Input file not found: {input_file}")
        destination = data_dir / source.name
        if source.resolve() != destination.resolve():
            shutil.copyfile(source, destination)
        logger.info(f"Copied {source.name} into {data_dir}")
    return sorted(str(p) for p in data_dir.iterdir() if p.is_file())


def build_agent(config: Settings, max_decisions: Optional[int] = None) -> FileAnalystAgent:
    return FileAnalystAgent(
        model=create_backend(config),
        registry=build_default_registry(config),
        max_decisions=config.AGENT_MAX_DECISIONS if max_decisions is None else max_decisions,
        max_identical_failures=config.AGENT_MAX_IDENTICAL_FAILURES,
        parallel_tools=config.AGENT_PARALLEL_TOOLS,
    )


def cmd_ask(args: argparse.Namespace, config: Settings) -> int:
    files = prepare_data_dir(Path(args.data_dir or config.DATA_DIR), args.file)
    agent = build_agent(config, args.max_decisions)
    result = agent.run(args.question, files)
    print(f"\nRESPONSE: {result.output}")
    return 0


async def run_evaluation(config: Settings, data_dir: Path, max_decisions: Optional[int] = None) -> AgentResult:
    """Fetch a random benchmark question, answer it and submit the answer."""
    if not config.HF_TOKEN:
        raise RuntimeError("HF_TOKEN is not set; add it to .env or the environment")

    async with BenchmarkClient(token=config.HF_TOKEN) as client:
        question = await client.get_random_question()
        ctx = RunContext.new(task_id=question.task_id)
        print(f"Question [{question.task_id}]: {question.question}")

        files: List[str] = []
        if question.has_file:
            path = await client.download_file(question.task_id, question.file_name, data_dir, context=ctx)
            files = [str(path)]
            print(f"Downloaded file: {path.name}")

        agent = build_agent(config, max_decisions)
        result = await agent.run_async(question.question, files, context=ctx)
        print(f"Agent answer: \"{result.output}\"")

        verdict = await client.submit(question.task_id, result.output, context=ctx)
        print(f"Result: {'CORRECT' if verdict.correct else 'INCORRECT'}")
        print(f"Score: {verdict.score}")
    return result


def cmd_evaluate(args: argparse.Namespace, config: Settings) -> int:
    asyncio.run(run_evaluation(config, Path(args.data_dir or config.DATA_DIR), args.max_decisions))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="file-analyst", description="Answer questions about local data files")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Answer a question, optionally about a file")
    ask.add_argument("question", help="The question to answer")
    ask.add_argument("--file", default=None, help="File to copy into the data directory first")
    ask.add_argument("--data-dir", default=None, help="Directory whose files the agent may inspect")
    ask.add_argument("--max-decisions", type=int, default=None, help="Recursion ceiling for this run")
    ask.set_defaults(handler=cmd_ask)

    evaluate = subparsers.add_parser("evaluate", help="Answer and submit one random benchmark question")
    evaluate.add_argument("--data-dir", default=None, help="Where to download task files")
    evaluate.add_argument("--max-decisions", type=int, default=None, help="Recursion ceiling for this run")
    evaluate.set_defaults(handler=cmd_evaluate)

    return parser


def main(argv: Optional[Sequence[str]] = None, config: Optional[Settings] = None) -> int:
    config = config or default_settings
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or config.LOG_LEVEL)
    return args.handler(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
