"""在命令行对一批股票执行规则，并以 JSON 输出结果。"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

# 将项目根目录加入 sys.path，便于复用现有模块
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import env  # noqa: F401,E402

from datahub.providers import ProviderError  # noqa: E402
from datahub.scanner import RuleScanner  # noqa: E402
from datahub.universe import default_universe, normalize_symbols  # noqa: E402
from engine.models import MalformedRule, Rule, RuleDraft  # noqa: E402
from engine.rules import validate_rule_definition  # noqa: E402
from engine.templates import rule_from_template  # noqa: E402
from infra.settings import Settings  # noqa: E402

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="执行选股规则并打印匹配结果。")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--rule-file", type=Path, help="规则定义 JSON 文件")
    source.add_argument("--template", help="内置模板 ID，例如 1（Value Stock Picker）")
    parser.add_argument("--symbols", nargs="+", help="股票代码列表，缺省时使用默认股票池")
    parser.add_argument("--limit", type=int, help="最多输出的命中数量")
    return parser.parse_args(argv)


def load_draft(args: argparse.Namespace) -> RuleDraft:
    if args.template:
        return rule_from_template(args.template)
    payload = json.loads(args.rule_file.read_text(encoding="utf-8"))
    return validate_rule_definition(payload)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)
    settings = Settings.from_env()

    try:
        draft = load_draft(args)
    except (MalformedRule, KeyError, OSError, ValueError) as exc:
        logger.error("规则无法加载：%s", exc)
        return 2

    rule = Rule(**draft.model_dump(), id=args.template or args.rule_file.stem)
    symbols = normalize_symbols(args.symbols) or default_universe(settings.scoring_universe_size)
    scanner = RuleScanner.from_settings(settings)
    try:
        result = asyncio.run(scanner.scan_rule(rule, symbols, limit=args.limit))
    except ProviderError as exc:
        logger.error("规则执行失败：%s", exc)
        return 1

    print(json.dumps(result.to_payload(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
