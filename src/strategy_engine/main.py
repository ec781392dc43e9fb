"""CLI 入口模块 - Strategy Engine 命令行接口。"""

import sys
from pathlib import Path

import click

from strategy_engine import __version__
from strategy_engine.backtest.metrics import generate_comparison_report
from strategy_engine.backtest.runner import (
    default_strategy_configs,
    run_algorithm_tests,
    run_edge_case_tests,
    write_backtest_artifacts,
)
from strategy_engine.backtest.scenarios import SCENARIO_NAMES, generate_test_scenarios
from strategy_engine.config import get_settings
from strategy_engine.risk.manager import RiskManager
from strategy_engine.schemas import StrategyKind
from strategy_engine.utils.logging import get_logger, setup_logging

_STRATEGY_CHOICES = [kind.value for kind in StrategyKind]


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Strategy Engine - 加密货币策略信号与风险评估引擎。

    包含动量、定投、质押收益与 CCI 四种策略，以及组合风控和场景回测。
    """
    if version:
        click.echo(f"strategy-engine version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--strategy",
    "-s",
    "strategies",
    multiple=True,
    type=click.Choice(_STRATEGY_CHOICES),
    help="只回测指定策略（可重复）",
)
@click.option(
    "--scenario",
    "scenario_names",
    multiple=True,
    type=click.Choice(list(SCENARIO_NAMES)),
    help="只运行指定场景（可重复）",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="回测产物输出目录（默认使用配置）",
)
@click.option("--workers", "-w", type=int, default=None, help="并行 worker 数")
@click.option("--seed", type=int, default=None, help="合成行情随机种子")
@click.option(
    "--skip-edge-cases",
    is_flag=True,
    default=False,
    help="跳过边界场景测试",
)
def backtest(
    strategies: tuple[str, ...],
    scenario_names: tuple[str, ...],
    output_dir: Path | None,
    workers: int | None,
    seed: int | None,
    skip_edge_cases: bool,
) -> None:
    """运行场景回测。

    每个策略在每个合成场景上独立模拟 → 风控校验 → 评分 → 写出产物
    """
    setup_logging()
    logger = get_logger("strategy_engine.main")
    settings = get_settings()
    target_dir = output_dir or settings.output_dir

    configs = [
        config
        for config in default_strategy_configs(settings.initial_capital)
        if not strategies or config.kind.value in strategies
    ]
    scenarios = generate_test_scenarios(
        seed=seed if seed is not None else settings.scenario_seed,
        symbols=settings.scenario_symbols,
        names=scenario_names or None,
    )

    logger.info(
        "starting_backtest",
        strategies=[config.kind.value for config in configs],
        scenarios=[scenario.name for scenario in scenarios],
        output_dir=str(target_dir),
    )

    try:
        results = run_algorithm_tests(
            configs=configs,
            scenarios=scenarios,
            settings=settings,
            max_workers=workers,
        )
        edge_results = (
            [] if skip_edge_cases else run_edge_case_tests(configs=configs, settings=settings)
        )
        write_backtest_artifacts(target_dir, results, edge_results)
    except KeyboardInterrupt:
        logger.info("backtest_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("backtest_failed", error=str(e))
        sys.exit(1)

    click.echo(generate_comparison_report(results))
    for edge in edge_results:
        marker = "[OK]" if edge.passed else "[FAIL]"
        click.echo(f"{marker} edge case {edge.name} ({edge.critical_level})")
        for issue in edge.issues:
            click.echo(f"   - {issue}")
    click.echo(f"Artifacts written to {target_dir}")


@cli.command(name="edge-cases")
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="任一边界场景失败时以退出码 1 结束",
)
def edge_cases(strict: bool) -> None:
    """运行边界场景测试（零成交量、价格异常、缺失数据、负价格、信号风暴）。"""
    setup_logging()
    logger = get_logger("strategy_engine.main")
    settings = get_settings()

    try:
        results = run_edge_case_tests(settings=settings)
    except Exception as e:
        logger.exception("edge_cases_failed", error=str(e))
        sys.exit(1)

    failed = [result for result in results if not result.passed]
    for result in results:
        marker = "[OK]" if result.passed else "[FAIL]"
        counts = ", ".join(f"{name}={count}" for name, count in result.signal_counts.items())
        click.echo(f"{marker} {result.name} ({result.critical_level}) signals: {counts}")
        for issue in result.issues:
            click.echo(f"   - {issue}")

    logger.info("edge_cases_completed", total=len(results), failed=len(failed))
    if strict and failed:
        sys.exit(1)


@cli.command()
@click.option(
    "--scenario",
    "scenario_name",
    type=click.Choice(list(SCENARIO_NAMES)),
    default="bear_market",
    show_default=True,
    help="用于判断行情状态的场景",
)
def optimize(scenario_name: str) -> None:
    """根据场景行情状态给出各策略的参数优化建议。"""
    setup_logging()
    settings = get_settings()

    scenario = generate_test_scenarios(
        seed=settings.scenario_seed,
        symbols=settings.scenario_symbols,
        names=[scenario_name],
    )[0]
    manager = RiskManager(settings.risk_limits())
    condition = manager.analyze_market_conditions(scenario.observations[-100:])

    click.echo(
        f"[Market] trend={condition.trend} volatility={condition.volatility} "
        f"volume={condition.volume} sentiment={condition.sentiment}"
    )
    for config in default_strategy_configs(settings.initial_capital):
        params = config.params.model_dump(exclude={"kind"})
        params.update(max_positions=config.max_positions, stop_loss_pct=config.stop_loss_pct)
        result = manager.optimize_algorithm(config.kind, params, condition)
        click.echo()
        click.echo(
            f"[{config.kind.value}] optimized={result.optimized} "
            f"confidence={result.confidence:.0f}"
        )
        for improvement in result.improvements:
            click.echo(f"   - {improvement}")


@cli.command()
def status() -> None:
    """显示配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Strategy Engine - Status")
    click.echo("=" * 50)
    click.echo()

    # 回测参数
    click.echo("[Backtest]")
    click.echo(f"   Initial capital: {settings.initial_capital}")
    click.echo(f"   Scenario seed: {settings.scenario_seed}")
    click.echo(f"   Scenario symbols: {', '.join(settings.scenario_symbols)}")
    click.echo(f"   Max workers: {settings.max_workers}")
    click.echo(f"   Strategies: {', '.join(_STRATEGY_CHOICES)}")
    click.echo()

    # 风控参数
    click.echo("[Risk Limits]")
    limits = settings.risk_limits()
    click.echo(f"   Max position size: {limits.max_position_size_pct}%")
    click.echo(f"   Max total exposure: {limits.max_total_exposure_pct}%")
    click.echo(f"   Max drawdown: {limits.max_drawdown_pct}%")
    click.echo(f"   Max correlation: {limits.max_correlation}")
    click.echo(f"   Max volatility: {limits.max_daily_volatility_pct}%")
    click.echo(f"   Min liquidity: {limits.min_liquidity}")
    click.echo(f"   Emergency stop-loss: {limits.emergency_stop_loss_pct}%")
    click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Output dir: {settings.output_dir}")
    click.echo()
    click.echo("=" * 50)


# 支持 python -m strategy_engine.main 调用
if __name__ == "__main__":
    cli()
