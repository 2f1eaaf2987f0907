"""
内置默认配置加载器。

设计目标：
- 作为库被引用时，不依赖 repo 相对路径即可运行；
- 默认配置通过 `importlib.resources` 随 package 分发（`local_agents/assets/default.yaml`）。
"""

from __future__ import annotations

from importlib.resources import files
from typing import Any, Dict

import yaml


def load_default_config_dict() -> Dict[str, Any]:
    """
    读取内置默认配置（YAML）并返回 dict。

    返回：
    - dict：作为深度合并的第一层（overlay 语义由 `local_agents.config.loader` 定义）

    异常：
    - RuntimeError：读取失败或内容不是 mapping(dict)
    """

    try:
        text = files("local_agents.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    except (OSError, ModuleNotFoundError) as e:  # pragma: no cover
        raise RuntimeError(f"failed to load embedded default config: {e}") from e
    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise RuntimeError("embedded default config root must be a mapping(dict)")
    return obj
