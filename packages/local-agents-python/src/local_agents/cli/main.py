"""
local-agents CLI。

子命令：
- `serve`：在 stdin/stdout 上运行 MCP server（日志只写 stderr）
- `list-agents`：输出已配置 agent 的 JSON 列表
- `invoke`：调用单个 agent，输出 AgentResult JSON
- `run`：并行/串行编排多个 agent，输出 OrchestratedResult JSON

exit code：
- 0：成功
- 1：agent 执行失败（结果中存在 success=false）
- 2：配置错误 / 参数错误
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional, Sequence

from local_agents import __version__
from local_agents.bootstrap import build_runner, build_server, discover_config_paths, load_dotenv_if_present
from local_agents.config.loader import LocalAgentsConfig, load_config, load_config_dicts
from local_agents.core.contracts import OrchestratedTask, OrchestrationMode
from local_agents.core.errors import ConfigError, FrameworkError, UserError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("local_agents.cli")


def _ensure_utf8_stdio() -> None:
    """best-effort 将 stdout/stderr 切换为 UTF-8（失败不阻断启动）。"""

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except (OSError, ValueError):
            continue


def _dump_json_to_stdout(obj: Any, *, pretty: bool) -> None:
    """把对象写为 JSON 到 stdout（pretty 时缩进 2）。"""

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2, default=str)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)
    print(text)


def _dump_error(err: FrameworkError, *, pretty: bool) -> int:
    """输出结构化错误 JSON，返回 EXIT_USAGE。"""

    _dump_json_to_stdout({"ok": False, "error": asdict(err.to_issue())}, pretty=pretty)
    return EXIT_USAGE


def _configure_logging(level: str) -> None:
    """配置根 logger：只写 stderr（stdout 专用于协议/JSON 输出）。"""

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stderr)
    try:
        logging.getLogger().setLevel(str(level).upper())
    except ValueError as e:
        raise ConfigError(f"invalid log_level: {level}", details={"log_level": str(level)}) from e


def _load_effective_config(args: argparse.Namespace) -> LocalAgentsConfig:
    """
    按 CLI 参数加载配置。

    规则：
    - 显式 `--config` 优先；否则按 `discover_config_paths()` 发现；都没有时仅使用内置默认配置
    - `--workspace` 覆盖配置中的 workspace（相对路径相对 cwd）

    异常：
    - ConfigError：配置缺失/非法/workspace 不存在
    """

    paths: List[Path] = [Path(p) for p in args.config] if args.config else discover_config_paths()
    if paths:
        cfg = load_config(paths)
    else:
        cfg = load_config_dicts([])

    if args.workspace:
        workspace = Path(args.workspace).expanduser().resolve()
        if not workspace.is_dir():
            raise ConfigError(
                f"workspace does not exist or is not a directory: {workspace}",
                details={"workspace": str(workspace)},
            )
        cfg = cfg.model_copy(update={"workspace": str(workspace)})
    return cfg


def _prepare(args: argparse.Namespace) -> LocalAgentsConfig:
    """公共启动流程：加载配置 -> 配置日志 -> 加载 `.env`。"""

    cfg = _load_effective_config(args)
    _configure_logging(args.log_level or cfg.log_level)
    if not args.no_dotenv:
        load_dotenv_if_present(cfg.workspace_path)
    return cfg


def _handle_serve(args: argparse.Namespace) -> int:
    """运行 MCP stdio server，直到 stdin EOF。"""

    cfg = _prepare(args)
    if not cfg.mcp.enabled:
        raise UserError("mcp server is disabled by config (mcp.enabled=false)", code="MCP_DISABLED")
    if cfg.mcp.transport != "stdio":
        raise UserError(
            f"unsupported mcp transport: {cfg.mcp.transport} (only stdio is served)",
            code="MCP_TRANSPORT_UNSUPPORTED",
            details={"transport": cfg.mcp.transport},
        )

    runner = build_runner(cfg)
    server = build_server(cfg, runner)
    logger.info("serving %d agent(s) from workspace %s", len(runner.list_agents()), runner.workspace)
    try:
        server.serve_stdio(max_message_bytes=cfg.mcp.max_message_bytes)
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        runner.close()
    return EXIT_OK


def _handle_list_agents(args: argparse.Namespace) -> int:
    """输出已注册 agent 信息（注册顺序）。"""

    cfg = _prepare(args)
    runner = build_runner(cfg)
    try:
        agents = [info.model_dump() for info in runner.list_agent_info()]
    finally:
        runner.close()
    _dump_json_to_stdout({"ok": True, "agents": agents}, pretty=args.pretty)
    return EXIT_OK


def _handle_invoke(args: argparse.Namespace) -> int:
    """调用单个 agent。"""

    cfg = _prepare(args)
    runner = build_runner(cfg)
    try:
        result = runner.invoke(args.agent, args.input)
    finally:
        runner.close()
    _dump_json_to_stdout({"ok": result.success, "result": result.model_dump()}, pretty=args.pretty)
    return EXIT_OK if result.success else EXIT_FAILED


def _handle_run(args: argparse.Namespace) -> int:
    """编排多个 agent（parallel/sequential）。"""

    cfg = _prepare(args)
    agents = [a.strip() for a in str(args.agents).split(",") if a.strip()]
    if not agents:
        raise UserError("--agents must name at least one agent", code="USAGE")
    task = OrchestratedTask(name=args.name, agents=agents, input=args.input, mode=args.mode)

    runner = build_runner(cfg)
    try:
        result = runner.execute_orchestrated(task)
    finally:
        runner.close()
    ok = result.all_successful()
    _dump_json_to_stdout(
        {"ok": ok, "result": result.model_dump(), "summary": result.summary()},
        pretty=args.pretty,
    )
    return EXIT_OK if ok else EXIT_FAILED


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(
        prog="local-agents",
        description="Local agent runtime exposed as an MCP stdio server.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        """为子命令添加公共 flags。"""

        p.add_argument("--config", action="append", default=[], help="Config file path (.yaml/.yml/.json, repeatable).")
        p.add_argument("--workspace", default=None, help="Override workspace directory.")
        p.add_argument(
            "--log-level",
            default=None,
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Override log level (logs go to stderr).",
        )
        p.add_argument("--no-dotenv", action="store_true", help="Disable loading .env from the workspace.")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    serve = sub.add_parser("serve", help="Run the MCP server on stdin/stdout")
    _add_common_flags(serve)

    list_agents = sub.add_parser("list-agents", help="List configured agents")
    _add_common_flags(list_agents)

    invoke = sub.add_parser("invoke", help="Invoke a single agent")
    _add_common_flags(invoke)
    invoke.add_argument("--agent", required=True, help="Agent name.")
    invoke.add_argument("--input", required=True, help="Task input for the agent.")

    run = sub.add_parser("run", help="Run several agents in parallel or in sequence")
    _add_common_flags(run)
    run.add_argument("--agents", required=True, help="Comma-separated agent names.")
    run.add_argument("--input", required=True, help="Task input shared by (or seeding) the agents.")
    run.add_argument(
        "--mode",
        default=OrchestrationMode.PARALLEL.value,
        choices=[m.value for m in OrchestrationMode],
        help="Orchestration mode (default: parallel).",
    )
    run.add_argument("--name", default="cli", help="Task name recorded in the result.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    _ensure_utf8_stdio()

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # `--help`/`--version` 为 0，参数错误为 2
        code = getattr(exc, "code", EXIT_USAGE)
        if code is None:
            return EXIT_USAGE
        return int(code)

    handlers = {
        "serve": _handle_serve,
        "list-agents": _handle_list_agents,
        "invoke": _handle_invoke,
        "run": _handle_run,
    }
    handler = handlers.get(args.command)
    if handler is None:  # pragma: no cover
        parser.print_help()
        return EXIT_USAGE
    try:
        return handler(args)
    except FrameworkError as e:
        return _dump_error(e, pretty=getattr(args, "pretty", False))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
